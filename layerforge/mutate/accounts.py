"""User and group account mutation (``/etc/passwd``, ``/etc/group``)."""

from __future__ import annotations

from layerforge.core.fs import WorkingTree
from layerforge.models.config import Accounts

PASSWD_PATH = "etc/passwd"
GROUP_PATH = "etc/group"


def _read_lines(tree: WorkingTree, path: str) -> list[str]:
    if not tree.exists(path):
        return []
    return [line for line in tree.read_text(path).splitlines() if line.strip()]


def _names(lines: list[str]) -> set[str]:
    return {line.split(":", 1)[0] for line in lines}


def mutate_accounts(tree: WorkingTree, accounts: Accounts) -> None:
    """Append configured groups and users not already present.

    Existing entries keep their position and content; new entries follow in
    configuration order. Home directories are created and owned by the user.
    """
    if not accounts.groups and not accounts.users:
        return

    groups = _read_lines(tree, GROUP_PATH)
    known_groups = _names(groups)
    for group in accounts.groups:
        if group.groupname in known_groups:
            continue
        groups.append(f"{group.groupname}:x:{group.gid}:{','.join(group.members)}")
        known_groups.add(group.groupname)

    users = _read_lines(tree, PASSWD_PATH)
    known_users = _names(users)
    for user in accounts.users:
        if user.username in known_users:
            continue
        gid = user.gid if user.gid is not None else user.uid
        home = user.home_dir or f"/home/{user.username}"
        users.append(
            f"{user.username}:x:{user.uid}:{gid}:{user.username}:{home}:{user.shell}"
        )
        known_users.add(user.username)

        if not tree.exists(home):
            tree.mkdir(home, 0o755)
        tree.chown(home, user.uid, gid)

    tree.write_text(GROUP_PATH, "\n".join(groups) + "\n", 0o644)
    tree.write_text(PASSWD_PATH, "\n".join(users) + "\n", 0o644)
