"""Shell-completion scripts for the omakure CLI."""

from __future__ import annotations

from .errors import OmakureError

SHELLS = ("bash", "zsh", "fish", "pwsh")

# (command, description, options)
COMMANDS: list[tuple[str, str, list[tuple[str, str]]]] = [
    ("scripts", "List available scripts", []),
    ("run", "Run a script without the navigator", [("--form", "Prompt for schema fields")]),
    ("init", "Create a new script template", []),
    ("config", "Show resolved paths and env", []),
    ("env", "Alias for config", []),
    ("list", "List installed flavors", []),
    ("install", "Install a flavor from git", [("--name", "Override the target folder name")]),
    ("completion", "Generate shell completion", []),
]


def _names() -> str:
    return " ".join(name for name, _, _ in COMMANDS)


def bash_completion() -> str:
    cases = []
    for name, _, options in COMMANDS:
        if options:
            words = " ".join(opt for opt, _ in options)
            cases.append(
                f'    {name})\n      COMPREPLY=( $(compgen -W "{words}" -- "${{cur}}") )\n      return 0\n      ;;'
            )
    cases.append(
        f'    completion)\n      COMPREPLY=( $(compgen -W "{" ".join(SHELLS)}" -- "${{cur}}") )\n      return 0\n      ;;'
    )
    body = "\n".join(cases)
    return f"""_omakure_complete() {{
  local cur prev
  cur="${{COMP_WORDS[COMP_CWORD]}}"
  prev="${{COMP_WORDS[COMP_CWORD-1]}}"

  local commands="{_names()}"

  if [[ ${{COMP_CWORD}} -eq 1 ]]; then
    COMPREPLY=( $(compgen -W "${{commands}} --version --debug --help" -- "${{cur}}") )
    return 0
  fi

  case "${{prev}}" in
{body}
  esac
}}

complete -F _omakure_complete omakure
"""


def zsh_completion() -> str:
    described = "\n".join(f"    '{name}:{desc}'" for name, desc, _ in COMMANDS)
    arg_cases = []
    for name, _, options in COMMANDS:
        if options:
            specs = " ".join(f"'{opt}[{desc}]'" for opt, desc in options)
            arg_cases.append(f"        {name})\n          _arguments {specs}\n          ;;")
    arg_cases.append(f"        completion)\n          _arguments '1:shell:({' '.join(SHELLS)})'\n          ;;")
    body = "\n".join(arg_cases)
    return f"""#compdef omakure

_omakure() {{
  local -a commands
  commands=(
{described}
  )

  _arguments \\
    '1:command:->command' \\
    '*::arg:->args'

  case $state in
    command)
      _describe -t commands 'omakure commands' commands
      ;;
    args)
      case $words[1] in
{body}
      esac
      ;;
  esac
}}

_omakure "$@"
"""


def fish_completion() -> str:
    lines = [f'complete -c omakure -f -n "__fish_use_subcommand" -a "{_names()}"']
    for name, _, options in COMMANDS:
        for opt, desc in options:
            lines.append(
                f"complete -c omakure -n '__fish_seen_subcommand_from {name}' "
                f'-l {opt.lstrip("-")} -d "{desc}"'
            )
    lines.append(
        "complete -c omakure -n '__fish_seen_subcommand_from completion' "
        f'-f -a "{" ".join(SHELLS)}"'
    )
    return "\n".join(lines) + "\n"


def pwsh_completion() -> str:
    names = ", ".join(f"'{name}'" for name, _, _ in COMMANDS)
    return f"""Register-ArgumentCompleter -Native -CommandName omakure -ScriptBlock {{
  param($wordToComplete, $commandAst, $cursorPosition)
  $commands = @({names})
  $elements = $commandAst.CommandElements
  if ($elements.Count -le 2) {{
    $commands | Where-Object {{ $_ -like "$wordToComplete*" }} | ForEach-Object {{
      [System.Management.Automation.CompletionResult]::new($_, $_, 'ParameterValue', $_)
    }}
    return
  }}
  if ($elements[1].Value -eq 'completion') {{
    @({", ".join(f"'{s}'" for s in SHELLS)}) | Where-Object {{ $_ -like "$wordToComplete*" }} | ForEach-Object {{
      [System.Management.Automation.CompletionResult]::new($_, $_, 'ParameterValue', $_)
    }}
  }}
}}
"""


def completion_script(shell: str) -> str:
    """Completion script for a shell name (``powershell`` aliases ``pwsh``)."""
    generators = {
        "bash": bash_completion,
        "zsh": zsh_completion,
        "fish": fish_completion,
        "pwsh": pwsh_completion,
        "powershell": pwsh_completion,
    }
    try:
        return generators[shell]()
    except KeyError:
        raise OmakureError(f"Unsupported shell: {shell}") from None
