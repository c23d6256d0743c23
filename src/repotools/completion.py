"""
Shell completion scripts.
"""

from typing import Dict, Sequence

from .repositories import KNOWN_REPOSITORIES, selector_choices

COMMANDS = {
    "repos": "List known repositories",
    "status": "Show git status of repositories",
    "pull": "Pull repositories",
    "hooks": "Git hook management",
    "conflicts": "Report package version conflicts",
    "graph": "Print the package dependency graph",
    "version": "Show a repository's version",
    "build": "Build a repository's solution",
    "pack": "Build and package a repository",
    "publish": "Build, package and publish a repository",
    "local-update": "Build packages locally and update dependents",
    "config": "Configuration management commands",
    "info": "Show usage information",
    "completion": "Generate shell completion scripts",
}

SELECTOR_COMMANDS = ("status", "pull", "hooks", "conflicts", "graph")
SINGLE_REPO_COMMANDS = ("version", "build", "pack", "publish", "local-update")


def get_bash_completion(known: Sequence[str] = KNOWN_REPOSITORIES) -> str:
    """Bash completion script."""
    return f"""
# Bash completion for repotools
_repotools_completion() {{
    local cur prev opts
    COMPREPLY=()
    cur="${{COMP_WORDS[COMP_CWORD]}}"
    prev="${{COMP_WORDS[COMP_CWORD-1]}}"

    if [[ ${{COMP_CWORD}} == 1 ]]; then
        opts="{' '.join(COMMANDS)} --root --version --help"
        COMPREPLY=( $(compgen -W "${{opts}}" -- ${{cur}}) )
        return 0
    fi

    case "${{prev}}" in
        --repo|-r)
            COMPREPLY=( $(compgen -W "{' '.join(selector_choices(known))}" -- ${{cur}}) )
            return 0
            ;;
        --target|-t)
            COMPREPLY=( $(compgen -W "{' '.join(known)}" -- ${{cur}}) )
            return 0
            ;;
        --output-format)
            COMPREPLY=( $(compgen -W "console json" -- ${{cur}}) )
            return 0
            ;;
        --on-error)
            COMPREPLY=( $(compgen -W "skip abort" -- ${{cur}}) )
            return 0
            ;;
        --output|-o|--root)
            COMPREPLY=( $(compgen -f -- ${{cur}}) )
            return 0
            ;;
    esac

    case "${{COMP_WORDS[1]}}" in
        config)
            COMPREPLY=( $(compgen -W "init show validate" -- ${{cur}}) )
            ;;
        hooks)
            COMPREPLY=( $(compgen -W "install --repo --on-error" -- ${{cur}}) )
            ;;
        {'|'.join(SINGLE_REPO_COMMANDS)})
            COMPREPLY=( $(compgen -W "{' '.join(known)}" -- ${{cur}}) )
            ;;
        {'|'.join(SELECTOR_COMMANDS)})
            COMPREPLY=( $(compgen -W "--repo --skip-dev --output --output-format" -- ${{cur}}) )
            ;;
    esac
}}

complete -F _repotools_completion repotools
"""


def get_zsh_completion(known: Sequence[str] = KNOWN_REPOSITORIES) -> str:
    """Zsh completion script."""
    command_lines = "\n        ".join(
        f"'{name}:{description}'" for name, description in COMMANDS.items()
    )
    return f"""
#compdef repotools

_repotools() {{
    local context state state_descr line
    typeset -A opt_args

    _arguments -C \\
        '--root[Workspace root]:directory:_directories' \\
        '1: :_repotools_commands' \\
        '*:: :->args'

    case $state in
        args)
            case $words[1] in
                {'|'.join(SELECTOR_COMMANDS)})
                    _arguments \\
                        '*'{{-r,--repo}}'[Repository selector]:repository:({' '.join(selector_choices(known))})' \\
                        '--skip-dev[Ignore development-only dependencies]' \\
                        '--output-format[Output format]:format:(console json)' \\
                        {{-o,--output}}'[Write output to file]:file:_files'
                    ;;
                {'|'.join(SINGLE_REPO_COMMANDS)})
                    _arguments '1:repository:({' '.join(known)})'
                    ;;
                config)
                    _arguments '1: :(init show validate)'
                    ;;
            esac
            ;;
    esac
}}

_repotools_commands() {{
    local commands
    commands=(
        {command_lines}
    )
    _describe 'command' commands
}}

_repotools "$@"
"""


def get_fish_completion(known: Sequence[str] = KNOWN_REPOSITORIES) -> str:
    """Fish completion script."""
    lines = ["", "# Fish completion for repotools", ""]
    for name, description in COMMANDS.items():
        lines.append(
            f"complete -c repotools -n '__fish_use_subcommand' -a '{name}' -d '{description}'"
        )
    lines.append("complete -c repotools -n '__fish_use_subcommand' -l root -d 'Workspace root' -F")
    lines.append("complete -c repotools -n '__fish_use_subcommand' -l version -d 'Show version'")
    lines.append("")

    selector_cmds = " ".join(SELECTOR_COMMANDS)
    lines.append(
        f"complete -c repotools -n '__fish_seen_subcommand_from {selector_cmds}' "
        f"-s r -l repo -d 'Repository selector' -x -a '{' '.join(selector_choices(known))}'"
    )
    lines.append(
        "complete -c repotools -n '__fish_seen_subcommand_from conflicts graph' "
        "-l skip-dev -d 'Ignore development-only dependencies'"
    )
    lines.append(
        f"complete -c repotools -n '__fish_seen_subcommand_from {' '.join(SINGLE_REPO_COMMANDS)}' "
        f"-x -a '{' '.join(known)}'"
    )
    lines.append(
        "complete -c repotools -n '__fish_seen_subcommand_from config' -x -a 'init show validate'"
    )
    return "\n".join(lines) + "\n"


def get_completion_scripts(known: Sequence[str] = KNOWN_REPOSITORIES) -> Dict[str, str]:
    """Return all completion scripts."""
    return {
        "bash": get_bash_completion(known),
        "zsh": get_zsh_completion(known),
        "fish": get_fish_completion(known),
    }
