from __future__ import annotations

import re

# (command, subcommand) -> pattern. An empty subcommand matches any arguments.
_PATTERN_RULES: list[tuple[str, str, str]] = [
    *[("npm", sub, f"npm {sub} *") for sub in ("install", "i", "add", "remove", "uninstall", "update", "run")],
    *[("yarn", sub, f"yarn {sub} *") for sub in ("add", "remove", "install")],
    *[("pnpm", sub, f"pnpm {sub} *") for sub in ("install", "add", "remove")],
    *[
        ("git", sub, f"git {sub} *")
        for sub in (
            "add", "commit", "push", "pull", "checkout", "branch",
            "merge", "clone", "reset", "rebase", "tag",
        )
    ],
    *[
        ("docker", sub, f"docker {sub} *")
        for sub in ("run", "build", "exec", "logs", "stop", "start", "rm", "rmi", "pull", "push")
    ],
    ("make", "", "make *"),
    *[("cargo", sub, f"cargo {sub} *") for sub in ("build", "run", "test", "install")],
    *[("mvn", sub, f"mvn {sub} *") for sub in ("compile", "test", "package")],
    *[("gradle", sub, f"gradle {sub} *") for sub in ("build", "test")],
    *[
        (cmd, "", f"{cmd} *")
        for cmd in (
            "curl", "wget", "ssh", "scp", "rsync", "tar", "zip", "unzip",
            "node", "python", "python3",
        )
    ],
    ("pip", "install", "pip install *"),
    ("pip3", "install", "pip3 install *"),
    ("composer", "install", "composer install *"),
    ("composer", "require", "composer require *"),
    ("bundle", "install", "bundle install *"),
    ("gem", "install", "gem install *"),
]


def get_command_pattern(command: str) -> str:
    """Generalise a shell command to the pattern shown for "always allow".

    >>> get_command_pattern('git commit -m "x"')
    'git commit *'
    >>> get_command_pattern("ls -la")
    'ls -la'
    """
    parts = command.strip().split()
    if not parts:
        return command

    base = parts[0]
    sub = parts[1] if len(parts) > 1 else ""

    for rule_cmd, rule_sub, pattern in _PATTERN_RULES:
        if base != rule_cmd:
            continue
        if rule_sub == "" or sub == rule_sub:
            return pattern

    return command


_SHELL_CONTROL = re.compile(r"[;&|`<>\n]|\$\(")


def has_shell_control(command: str) -> bool:
    return _SHELL_CONTROL.search(command) is not None


def matches_pattern(pattern: str, command: str) -> bool:
    """True if ``command`` is covered by a stored always-allow entry.

    Wildcard entries never cover commands containing shell operators or redirections.
    """
    command = command.strip()
    if pattern == command:
        return True
    if has_shell_control(command):
        return False
    if pattern.endswith(" *"):
        prefix = pattern[:-2]
        return command == prefix or command.startswith(prefix + " ")
    return False
