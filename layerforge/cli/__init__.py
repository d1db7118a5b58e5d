"""layerforge command line interface."""
