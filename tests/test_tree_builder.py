from __future__ import annotations

from dataclasses import dataclass, field

import pytest

import autocompletor  # type: ignore
from autocompletor import Command, Flag  # type: ignore


@dataclass(frozen=True, slots=True)
class FakeHelpProvider:
    help_texts: dict[tuple[str, tuple[str, ...] | None], str | None]
    man_texts: dict[str, str | None] = field(default_factory=dict)
    calls: list[tuple[str, tuple[str, ...] | None]] = field(default_factory=list)

    def get_help_text(self, *, command: str, subcommand) -> str | None:
        self.calls.append((command, subcommand))
        return self.help_texts.get((command, subcommand))

    def get_man_text(self, *, command: str, subcommand) -> str | None:
        return self.man_texts.get(command)


@dataclass(slots=True)
class GeneratedHelpProvider:
    """Every node lists the same two subcommands, with path-specific text."""

    calls: int = 0

    def get_help_text(self, *, command: str, subcommand) -> str | None:
        self.calls += 1
        label = " ".join([command, *(subcommand or ())])
        return (
            f"Usage: {label} <command>\n\n"
            "Commands:\n"
            "  alpha  First\n"
            "  bravo  Second\n\n"
            "Options:\n"
            "  -q, --quiet  Less output\n"
        )

    def get_man_text(self, *, command: str, subcommand) -> str | None:
        return None


DEMO_HELP = (
    "Usage: demo [command]\n"
    "\n"
    "Commands:\n"
    "  dir   Directory mode\n"
    "  dns   DNS mode\n"
    "\n"
    "Options:\n"
    "  -v, --verbose  Verbose output\n"
)

DEMO_MAN = (
    "NAME\n"
    "       demo - Demo tool\n"
    "\n"
    "OPTIONS\n"
    "       -f, --force\n"
    "              Force it.\n"
    "\n"
    "COMMANDS\n"
    "       alpha\n"
    "              Alpha command.\n"
    "       beta  Beta command\n"
)


def _max_tree_depth(command: Command) -> int:
    return command.depth()


def test_help_path_recurses_and_degrades_failed_subcommands():
    provider = FakeHelpProvider(
        help_texts={
            ("demo", None): DEMO_HELP,
            ("demo", ("dir",)): "Usage: demo dir [flags]\n\nFlags:\n"
            "  -u, --url <URL>    Target URL to scan\n",
            ("demo", ("dns",)): None,
        }
    )

    tree = autocompletor.build_command_tree(help_provider=provider, command="demo")

    assert tree.name == "demo"
    assert tree.flags == [
        Flag(short="-v", long="--verbose", description="Verbose output")
    ]
    assert [s.name for s in tree.subcommands] == ["dir", "dns"]

    dir_cmd, dns_cmd = tree.subcommands
    assert dir_cmd.description == "Directory mode"
    assert dir_cmd.flags == [
        Flag(short="-u", long="--url", description="Target URL to scan", takes_arg=True)
    ]
    assert dns_cmd.description == "DNS mode"
    assert dns_cmd.flags == []
    assert dns_cmd.subcommands == []


def test_man_page_is_primary_and_help_fills_gaps():
    provider = FakeHelpProvider(
        help_texts={
            ("demo", None): "Usage: demo <command>\n\nCommands:\n"
            "  alpha   Alpha from help\n"
            "  gamma   Gamma command\n",
            ("demo", ("alpha",)): "  -a, --all  Everything\n",
            ("demo", ("gamma",)): "  -g  Gee\n",
            ("demo", ("beta",)): "  -b, --bravo  Bravo\n",
        },
        man_texts={"demo": DEMO_MAN},
    )

    tree = autocompletor.build_command_tree(help_provider=provider, command="demo")

    assert tree.description == "Demo tool"
    assert tree.flags == [Flag(short="-f", long="--force", description="Force it.")]
    # man order first, help-only entries appended
    assert [s.name for s in tree.subcommands] == ["alpha", "beta", "gamma"]

    alpha, beta, gamma = tree.subcommands
    assert alpha.description == "Alpha command."
    assert [f.long for f in alpha.flags] == ["--all"]
    assert [f.long for f in beta.flags] == ["--bravo"]
    assert beta.description == "Beta command"
    assert gamma.description == "Gamma command"
    assert [f.short for f in gamma.flags] == ["-g"]

    # alpha was already covered by the help tree: no second invocation
    assert provider.calls.count(("demo", ("alpha",))) == 1
    assert provider.calls.count(("demo", ("beta",))) == 1


def test_man_page_without_flags_falls_back_to_help():
    provider = FakeHelpProvider(
        help_texts={("demo", None): DEMO_HELP},
        man_texts={"demo": "NAME\n       demo - Demo tool\n\nDESCRIPTION\n       Nothing.\n"},
    )

    tree = autocompletor.build_command_tree(help_provider=provider, command="demo")

    assert [f.long for f in tree.flags] == ["--verbose"]
    assert tree.description == "Demo tool"


def test_no_sources_raises_no_completions_found():
    provider = FakeHelpProvider(help_texts={})

    with pytest.raises(autocompletor.SourceUnavailable):
        autocompletor.parse_help_tree(help_provider=provider, command="ghost")

    with pytest.raises(autocompletor.NoCompletionsFound):
        autocompletor.build_command_tree(help_provider=provider, command="ghost")


def test_help_without_flags_or_subcommands_raises():
    provider = FakeHelpProvider(help_texts={("plain", None): "Just some text.\n"})

    with pytest.raises(autocompletor.NoCompletionsFound):
        autocompletor.build_command_tree(help_provider=provider, command="plain")


def test_depth_is_bounded():
    provider = GeneratedHelpProvider()

    tree = autocompletor.build_command_tree(
        help_provider=provider, command="deep", max_depth=3
    )

    assert _max_tree_depth(tree) == 3
    # 2 + 4 + 8 subcommands plus the root, one --help call each
    assert provider.calls == 15
    leaf = tree.subcommands[0].subcommands[0].subcommands[0]
    assert leaf.name == "alpha"
    assert [f.long for f in leaf.flags] == ["--quiet"]
    assert leaf.subcommands == []


def test_max_depth_one_only_lists_direct_subcommands():
    provider = GeneratedHelpProvider()

    tree = autocompletor.build_command_tree(
        help_provider=provider, command="deep", max_depth=1
    )

    assert _max_tree_depth(tree) == 1
    assert [s.name for s in tree.subcommands] == ["alpha", "bravo"]


def test_read_help_page_past_max_depth():
    provider = GeneratedHelpProvider()

    with pytest.raises(autocompletor.DepthExceeded):
        autocompletor.read_help_page(
            help_provider=provider,
            command="deep",
            subcommand=("a", "b", "c", "d"),
            depth=4,
            max_depth=3,
        )
    assert provider.calls == 0


def test_repeated_parent_help_is_not_descended():
    text = "Usage: loop\n\nCommands:\n  again  Run again\n\n  -x, --extra  Extra\n"
    provider = FakeHelpProvider(
        help_texts={
            ("loop", None): text,
            ("loop", ("again",)): text,
        }
    )

    tree = autocompletor.build_command_tree(help_provider=provider, command="loop")

    assert [s.name for s in tree.subcommands] == ["again"]
    again = tree.subcommands[0]
    assert again.description == "Run again"
    assert again.flags == []
    assert again.subcommands == []


def test_man_only_subcommand_ignores_repeated_root_help():
    root_help = (
        "Usage: echoer <command>\n\n"
        "Commands:\n"
        "  run  Run things\n\n"
        "Options:\n"
        "  -v, --verbose  Verbose output\n"
        "  -o, --output <FILE>  Output file\n"
    )
    provider = FakeHelpProvider(
        help_texts={
            ("echoer", None): root_help,
            ("echoer", ("run",)): root_help,
            ("echoer", ("legacy",)): root_help,
        },
        man_texts={
            "echoer": (
                "NAME\n"
                "       echoer - Echoing tool\n"
                "\n"
                "OPTIONS\n"
                "       -f, --force\n"
                "              Force it.\n"
                "\n"
                "COMMANDS\n"
                "       legacy  Old behaviour\n"
            )
        },
    )

    tree = autocompletor.build_command_tree(help_provider=provider, command="echoer")

    assert [f.long for f in tree.flags] == ["--force"]
    assert [s.name for s in tree.subcommands] == ["legacy", "run"]
    legacy, run = tree.subcommands
    assert legacy.description == "Old behaviour"
    assert legacy.flags == []
    assert run.description == "Run things"
    assert run.flags == []
    assert provider.calls.count(("echoer", ("legacy",))) == 1


def test_reserved_subcommands_are_not_invoked():
    provider = FakeHelpProvider(
        help_texts={
            ("tool", None): "Commands:\n  help  Show help\n  run   Run\n",
        }
    )

    tree = autocompletor.build_command_tree(help_provider=provider, command="tool")

    assert [s.name for s in tree.subcommands] == ["run"]
    assert ("tool", ("help",)) not in provider.calls


def test_merge_subcommands_keeps_first_seen_fields():
    dst = Command(
        name="root",
        subcommands=[Command(name="x", description="from man"), Command(name="y")],
    )
    src = Command(
        name="root",
        subcommands=[
            Command(name="x", description="from help", flags=[Flag(short="-a")]),
            Command(name="X", description="different case"),
            Command(name="z", description="help only"),
        ],
    )

    shared = autocompletor.merge_subcommands(dst, src)

    assert shared == ["x"]
    assert [s.name for s in dst.subcommands] == ["x", "y", "X", "z"]
    assert dst.subcommands[0].description == "from man"
    assert dst.subcommands[0].flags == [Flag(short="-a")]


def test_zero_max_depth_drops_man_subcommands():
    provider = FakeHelpProvider(help_texts={}, man_texts={"demo": DEMO_MAN})

    tree = autocompletor.build_command_tree(
        help_provider=provider, command="demo", max_depth=0
    )

    assert tree.subcommands == []
    assert [f.long for f in tree.flags] == ["--force"]


def test_man_only_source_skips_help():
    provider = FakeHelpProvider(help_texts={}, man_texts={"demo": DEMO_MAN})

    tree = autocompletor.build_command_tree(
        help_provider=provider, command="demo", source="man"
    )

    assert [s.name for s in tree.subcommands] == ["alpha", "beta"]
    assert provider.calls == []


def test_tree_round_trips_through_json_payload():
    provider = FakeHelpProvider(
        help_texts={
            ("demo", None): DEMO_HELP,
            ("demo", ("dir",)): "  -u, --url <URL>    Target URL\n",
        }
    )
    tree = autocompletor.build_command_tree(help_provider=provider, command="demo")

    payload = autocompletor.command_tree_to_dict(tree)

    assert payload["protocol_version"] == autocompletor.PROTOCOL_VERSION
    assert autocompletor.validate_command_tree(payload=payload, command="demo") == tree


def test_validate_command_tree_rejects_duplicates():
    payload = {
        "protocol_version": autocompletor.PROTOCOL_VERSION,
        "generated_at": "2026-01-01T00:00:00+00:00",
        "name": "demo",
        "description": "",
        "flags": [
            {"short": "-a", "long": "", "description": "", "takes_arg": False},
            {"short": "-a", "long": "", "description": "", "takes_arg": False},
        ],
        "subcommands": [],
    }

    with pytest.raises(ValueError, match="duplicate flag"):
        autocompletor.validate_command_tree(payload=payload)
