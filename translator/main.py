"""
Command-line entry point: stream a translation to stdout or list models.
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

import structlog

from .config import Configuration
from .languages import Language
from .llm.client import OllamaClient
from .llm.exceptions import TranslationError
from .logging_utils import configure_logging
from .session import SessionState, Translator

logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="translator",
        description="Translate text with a local Ollama server.",
    )
    parser.add_argument("text", nargs="?", help="Text to translate (default: stdin)")
    parser.add_argument("-s", "--source", default="en", help="Source language code")
    parser.add_argument("-t", "--target", default="zh", help="Target language code")
    parser.add_argument("-m", "--model", help="Model name (default: configured model)")
    parser.add_argument("--url", help="Ollama server address")
    parser.add_argument("--config", help="Path to a config.yaml")
    parser.add_argument(
        "--list-models", action="store_true", help="List installed models and exit"
    )
    return parser


def _write(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


async def list_models(client: OllamaClient) -> int:
    try:
        names = await client.list_models()
    except TranslationError as e:
        print(e.user_message, file=sys.stderr)
        return EXIT_FAILED
    for name in sorted(names):
        print(name)
    return EXIT_OK


async def translate(
    translator: Translator,
    source: Language,
    target: Language,
    text: str,
    model: str | None,
) -> int:
    prompt = translator.configuration.build_prompt(source, target, text)
    session = await translator.start(prompt, _write, model=model)

    # Ctrl-C cancels the session instead of killing the process
    if sys.platform != "win32":
        loop = asyncio.get_running_loop()
        loop.add_signal_handler(signal.SIGINT, session.cancel)

    try:
        outcome = await session.wait()
    finally:
        if sys.platform != "win32":
            loop.remove_signal_handler(signal.SIGINT)

    _write("\n")
    if outcome.state is SessionState.FAILED and outcome.error is not None:
        print(outcome.error.user_message, file=sys.stderr)
        return EXIT_FAILED
    if outcome.state is SessionState.CANCELLED:
        if not outcome.text:
            print(outcome.display_text, file=sys.stderr)
        return EXIT_CANCELLED
    return EXIT_OK


async def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    configuration = Configuration(args.config)
    if args.url:
        configuration.get_config_dict().setdefault("ollama", {})["base_url"] = args.url
    configure_logging(configuration.get_logging_config().get("level", "WARNING"))

    async with OllamaClient.from_configuration(configuration) as client:
        if args.list_models:
            return await list_models(client)

        try:
            source = Language.from_code(args.source)
            target = Language.from_code(args.target)
        except ValueError as e:
            print(str(e), file=sys.stderr)
            return EXIT_FAILED

        text = args.text if args.text is not None else sys.stdin.read()
        translator = Translator(client, configuration)
        if not translator.can_translate(text, source, target):
            print(
                "Nothing to translate: text is blank or languages are the same",
                file=sys.stderr,
            )
            return EXIT_FAILED

        logger.debug(
            "Starting translation",
            source=source.code,
            target=target.code,
            base_url=client.base_url,
        )
        return await translate(translator, source, target, text, args.model)


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
