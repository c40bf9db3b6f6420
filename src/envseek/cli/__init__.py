"""
CLI for envseek.

Searches the OS executable path, compiler include and library directories,
interpreter module paths and other environment variables for files.
"""

from pathlib import Path
from typing import NoReturn, Optional

import typer
from rich.console import Console
from rich.table import Table

from envseek import __version__
from envseek.cli.logging_setup import setup_logging
from envseek.cli.reporter import ConsoleReporter
from envseek.core.config import LoggingConfig
from envseek.core.content_grep import ContentGrepError
from envseek.core.errors import PatternSyntaxError
from envseek.core.models import (
    Bitness,
    CompilerFamily,
    CompilerRecord,
    InterpreterRecord,
    InterpreterSelector,
)
from envseek.services import (
    ALL_DOMAINS,
    SearchCommand,
    SearchDomain,
    SearchDriver,
    SearchFlags,
    create_services,
)

EXIT_FOUND = 0
EXIT_NOT_FOUND = 1
EXIT_ERROR = 2

# Matches go to stdout, diagnostics to stderr
console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="envseek",
    help="Search compiler, interpreter and environment search paths for files",
    add_completion=False,
)


def _fail(message: str) -> NoReturn:
    err_console.print(f"[bold red]Error:[/bold red] {message}", highlight=False)
    raise typer.Exit(EXIT_ERROR)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"envseek {__version__}")
        raise typer.Exit()


def _print_compilers(records: list[CompilerRecord]) -> None:
    if not records:
        console.print("[yellow]No compilers found on PATH.[/yellow]")
        return
    table = Table(title="Compilers on PATH")
    table.add_column("Compiler", style="bold")
    table.add_column("Bits")
    table.add_column("Status")
    table.add_column("Include / library dirs", justify="right")
    table.add_column("Path")
    for record in records:
        status = "ignored" if record.ignored else record.state.value
        counts = "-"
        if record.include_paths is not None and record.library_paths is not None:
            counts = f"{len(record.include_paths)} / {len(record.library_paths)}"
        table.add_row(record.short_name, record.bitness.value, status, counts, record.display_name)
    console.print(table)


def _print_interpreters(records: list[InterpreterRecord]) -> None:
    if not records:
        console.print("[yellow]No interpreters found on PATH.[/yellow]")
        return
    table = Table(title="Interpreters on PATH")
    table.add_column("Variant", style="bold")
    table.add_column("Version")
    table.add_column("Bits")
    table.add_column("Default")
    table.add_column("Embeddable")
    table.add_column("Path")
    for record in records:
        table.add_row(
            record.variant.value,
            record.version_str,
            record.bitness.value,
            "yes" if record.is_default else "",
            "yes" if record.is_embeddable else "",
            record.display_name,
        )
    console.print(table)


@app.command()
def search(
    pattern: Optional[str] = typer.Argument(None, help="File spec to search for (glob)"),
    path: bool = typer.Option(False, "--path", help="Search PATH"),
    inc: bool = typer.Option(False, "--inc", help="Search INCLUDE and the compilers' include directories"),
    lib: bool = typer.Option(False, "--lib", help="Search LIB and the compilers' library directories"),
    python: bool = typer.Option(False, "--python", help="Search the interpreters' sys.path"),
    py: Optional[InterpreterSelector] = typer.Option(
        None, "--py", help="Which interpreters --python searches (implies --python)"
    ),
    lua: bool = typer.Option(False, "--lua", help="Search LUA_PATH and LUA_CPATH"),
    env: Optional[list[str]] = typer.Option(None, "--env", help="Also search this environment variable"),
    search_all: bool = typer.Option(False, "--all", help="Search every domain"),
    case: bool = typer.Option(False, "--case", "-c", help="Match file names case-sensitively"),
    recursive: bool = typer.Option(False, "--recursive", "-r", help="Descend into sub-directories"),
    unix_paths: bool = typer.Option(False, "--unix-paths", "-u", help="Show paths with forward slashes"),
    no_cache: bool = typer.Option(False, "--no-cache", help="Neither read nor write the probe cache"),
    grep: Optional[str] = typer.Option(None, "--grep", help="Only report files containing this text"),
    regex: bool = typer.Option(False, "--regex", help="Treat --grep as a regular expression"),
    dir_mode: bool = typer.Option(False, "--dir", "-D", help="Report matching directories only"),
    m32: bool = typer.Option(False, "--m32", help="Ask compilers for 32-bit library directories"),
    m64: bool = typer.Option(False, "--m64", help="Ask compilers for 64-bit library directories"),
    no_gcc: bool = typer.Option(False, "--no-gcc", help="Skip gcc"),
    no_gpp: bool = typer.Option(False, "--no-g++", help="Skip g++"),
    no_prefix: bool = typer.Option(False, "--no-prefix", help="Skip prefixed GNU toolchains"),
    no_clang: bool = typer.Option(False, "--no-clang", help="Skip clang and clang-cl"),
    no_intel: bool = typer.Option(False, "--no-intel", help="Skip icx and dpcpp"),
    no_msvc: bool = typer.Option(False, "--no-msvc", help="Skip cl"),
    no_borland: bool = typer.Option(False, "--no-borland", help="Skip Borland compilers"),
    no_watcom: bool = typer.Option(False, "--no-watcom", help="Skip Watcom compilers"),
    show_size: bool = typer.Option(False, "--size", "-s", help="Show file sizes"),
    compilers: bool = typer.Option(False, "--compilers", help="List the compilers found and exit"),
    pythons: bool = typer.Option(False, "--pythons", help="List the interpreters found and exit"),
    modules: bool = typer.Option(False, "--modules", help="List installed modules and exit"),
    config: Optional[Path] = typer.Option(None, "--config", help="Use this envseek.cfg"),
    debug: int = typer.Option(0, "--debug", "-d", count=True, help="Debug output (repeat for more)"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only show errors"),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show the version and exit"
    ),
):
    """Search for files along compiler, interpreter and environment search paths."""
    if m32 and m64:
        _fail("--m32 and --m64 are mutually exclusive.")

    # Warnings from reading envseek.cfg need a handler before its logging settings are known
    setup_logging(LoggingConfig(), debug=debug, quiet=quiet)
    services = create_services(config_path=config, use_cache=not no_cache)
    setup_logging(services.config.logging, debug=debug, quiet=quiet)

    excluded = {
        family
        for family, off in (
            (CompilerFamily.GNU_C, no_gcc),
            (CompilerFamily.GNU_CXX, no_gpp),
            (CompilerFamily.CLANG, no_clang),
            (CompilerFamily.INTEL, no_intel),
            (CompilerFamily.MSVC, no_msvc),
            (CompilerFamily.BORLAND, no_borland),
            (CompilerFamily.WATCOM, no_watcom),
        )
        if off
    }
    flags = SearchFlags(
        case_sensitive=True if case else None,
        recursive=recursive,
        show_unix_paths=unix_paths,
        use_cache=not no_cache,
        grep=grep,
        grep_regex=regex,
        dir_mode=dir_mode,
        bitness=Bitness.BITS_32 if m32 else Bitness.BITS_64 if m64 else Bitness.UNKNOWN,
        debug=debug,
        keep_temp=debug > 0,
        no_prefix=no_prefix,
        excluded_families=frozenset(excluded),
    )
    driver = SearchDriver(services)
    selector = py or (InterpreterSelector.ALL if search_all else InterpreterSelector.DEFAULT)

    if compilers or pythons or modules:
        if compilers:
            _print_compilers(driver.compiler_inventory(flags))
        if pythons:
            _print_interpreters(driver.interpreter_inventory(flags))
        if modules:
            for record, mods in driver.module_inventory(selector, flags):
                console.print(f"[cyan]Modules of {record.display_name} ({record.version_str}):[/cyan]")
                for mod in mods:
                    console.print(f"  {mod.name} {mod.version}  {mod.location}", highlight=False)
        raise typer.Exit(EXIT_FOUND)

    if search_all:
        domains = set(ALL_DOMAINS)
    else:
        domains = {
            domain
            for domain, on in (
                (SearchDomain.PATH, path),
                (SearchDomain.INCLUDE, inc),
                (SearchDomain.LIBRARY, lib),
                (SearchDomain.PYTHON, python or py is not None),
                (SearchDomain.LUA, lua),
            )
            if on
        }
    if env:
        domains.add(SearchDomain.ENV)
    if not domains:
        _fail('Use at least one of "--path", "--inc", "--lib", "--python", "--lua", "--env" or "--all".')
    if not pattern:
        _fail("You must give a file spec to search for.")
    assert pattern is not None

    command = SearchCommand(
        pattern=pattern,
        domains=frozenset(domains),
        interpreter_selector=selector,
        flags=flags,
        env_vars=list(env or []),
    )
    reporter = ConsoleReporter(console, show_unix_paths=unix_paths, show_size=show_size)
    try:
        summary = driver.run(command, reporter)
    except PatternSyntaxError as e:
        _fail(str(e))
    except ContentGrepError as e:
        _fail(str(e))

    reporter.finish(pattern)
    raise typer.Exit(EXIT_FOUND if summary.found else EXIT_NOT_FOUND)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
