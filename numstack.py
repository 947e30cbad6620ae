"""NumStack entry point and REPL wiring."""

from __future__ import annotations
import argparse
import sys
from typing import Callable, List, Optional

from interpreter import ExitSignal, Interpreter

__version__ = "0.0.1"

PROMPT = "\x1b[38;2;153;221;255m>>>\033[0m "
CONTINUE_PROMPT = "\x1b[38;2;153;221;255m..>\033[0m "


def run_repl(input_func: Callable[[str], str] = input) -> int:
    print("\x1b[38;2;153;221;255mNumStack\033[0m REPL. Enter code, blank line to run buffer.") # "NumStack" in light blue
    interpreter = Interpreter(debug=True, argv=[])
    buffer: List[str] = []

    while True:
        try:
            line = input_func(PROMPT if not buffer else CONTINUE_PROMPT)
        except EOFError:
            print()
            break

        if line.strip() == "":
            if not buffer:
                continue
            source_text = "\n".join(buffer)
            buffer.clear()
            try:
                interpreter.run(source_text)
            except ExitSignal as sig:
                return sig.code
            continue

        buffer.append(line)

    return 0


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="numstack", description="NumStack stack-based interpreter")
    parser.add_argument("program", nargs="?", help="Script path, or literal source with --source")
    parser.add_argument("args", nargs="*", help="Arguments exposed to the script through args-cmd")
    parser.add_argument("-s", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-d", "--debug", action="store_true", help="Trace the stack before every token")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args(argv)

    if args.program is None:
        if args.source_mode:
            print("Error! --source requires a program string", file=sys.stderr)
            return 1
        return run_repl()

    if args.source_mode:
        source_text = args.program
    else:
        try:
            with open(args.program, "r", encoding="utf-8") as handle:
                source_text = handle.read()
        except OSError as exc:
            print(f"Error! Failed to read {args.program}: {exc}", file=sys.stderr)
            return 1

    interpreter = Interpreter(debug=args.debug, argv=[args.program, *args.args])
    try:
        interpreter.run(source_text)
    except ExitSignal as sig:
        return sig.code
    return 0


if __name__ == "__main__":
    raise SystemExit(run_cli())
