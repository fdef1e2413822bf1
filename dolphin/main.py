"""CLI/API entrypoint for the Dolphin STEM solver."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import json
from pathlib import Path
from typing import Any, Dict, Optional

from dolphin.agents.auth import EnvironmentCredentialProvider
from dolphin.agents.session import SolverSession
from dolphin.utils.config_loader import AppConfig, load_app_config, load_prompts_registry
from dolphin.utils.logger import configure_logging, get_logger
from dolphin.utils.preferences import PreferenceStore, SearchHistory


logger = get_logger("dolphin.cli")


def build_parser() -> argparse.ArgumentParser:
    """Builds CLI argument parser for app entrypoints.

    Returns:
        Configured argument parser.
    """
    parser = argparse.ArgumentParser(description="Dolphin STEM solver")
    parser.add_argument("--mode", choices=["solve", "search", "history", "api"], default="solve")
    parser.add_argument("--image-path", type=str, default=None, help="Local path of the problem image")
    parser.add_argument("--image-media-type", type=str, default=None, help="Media type of the image file")
    parser.add_argument("--query", type=str, default="", help="Search query (search mode)")
    parser.add_argument("--video", action="store_true", help="Render the visualization prompt into a video")
    parser.add_argument("--language", type=str, default=None, help="Translate the produced text into this language")
    parser.add_argument("--clear", action="store_true", help="Clear the recent-query history (history mode)")
    parser.add_argument("--interactive-key", action="store_true", help="Prompt for the API key when selection is needed")
    parser.add_argument("--host", type=str, default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--log-level", type=str, default=None, help="Overrides logging.level from the config")
    parser.add_argument("--config", type=str, default="configs/app_config.yml")
    parser.add_argument("--prompts", type=str, default="configs/prompts.yml")
    return parser


def _load_config(path: str) -> AppConfig:
    return load_app_config(path) if Path(path).exists() else AppConfig()


def _load_prompts(path: str) -> Dict[str, Dict[str, str]]:
    return load_prompts_registry(path) if Path(path).exists() else {}


def _build_history(config: AppConfig) -> SearchHistory:
    return SearchHistory(
        store=PreferenceStore(config.history.path),
        key=config.history.key,
        limit=config.history.limit,
    )


def _build_session(config: AppConfig, prompts: Dict[str, Dict[str, str]], interactive_key: bool) -> SolverSession:
    api_key_env = str(config.llm.get("api_key_env", "GEMINI_API_KEY"))
    credentials = EnvironmentCredentialProvider(
        api_key_env=api_key_env,
        prompt=getpass.getpass if interactive_key else None,
    )
    return SolverSession(
        config=config,
        credentials=credentials,
        history=_build_history(config),
        prompts=prompts,
    )


def _print(payload: Dict[str, Any]) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


async def run_solve(
    session: SolverSession,
    image_path: str,
    media_type: Optional[str] = None,
    video: bool = False,
    language: Optional[str] = None,
) -> int:
    """Solves one image and optionally renders a video and a translation.

    Args:
        session: Session to run against.
        image_path: Local image path.
        media_type: Optional declared media type.
        video: Whether to generate the explanation video.
        language: Optional translation language.

    Returns:
        Process exit code.
    """
    await session.initialize()
    try:
        await session.analyze(image_path, mime_type=media_type)
    except Exception:
        _print(session.snapshot())
        return 1

    exit_code = 0
    translation = None
    if language:
        translation = (await session.translate_solution(language)).to_dict()
    if video:
        try:
            await session.generate_video()
        except Exception as exc:
            logger.error("cli_video_failed error=%s", exc)
            exit_code = 1

    payload = session.snapshot()
    if translation is not None:
        payload["translation"] = translation
    _print(payload)
    return exit_code


async def run_search(session: SolverSession, query: str, language: Optional[str] = None) -> int:
    await session.initialize()
    try:
        await session.search(query)
    except Exception:
        _print(session.snapshot())
        return 1

    payload = session.snapshot()
    if language:
        outcome = await session.translate_search(language)
        payload["translation"] = outcome.to_dict()
    _print(payload)
    return 0


def run_history(config: AppConfig, clear: bool = False) -> int:
    history = _build_history(config)
    if clear:
        history.clear()
    _print({"items": history.items})
    return 0


def run_api(host: str, port: int, config: AppConfig, prompts: Dict[str, Dict[str, str]]) -> int:
    """Runs FastAPI server using Uvicorn.

    Args:
        host: Bind host.
        port: Bind port.
        config: Application config.
        prompts: Resolved prompt registry.

    Returns:
        Process exit code.
    """
    import uvicorn

    from dolphin.api import create_app

    app = create_app(config=config, prompts=prompts)
    uvicorn.run(app, host=host, port=port)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Application entrypoint for CLI and API modes.

    Returns:
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    config = _load_config(args.config)
    configure_logging(args.log_level or str(config.logging.get("level", "INFO")))
    prompts = _load_prompts(args.prompts)

    if args.mode == "api":
        return run_api(args.host, args.port, config, prompts)
    if args.mode == "history":
        return run_history(config, clear=args.clear)

    if args.mode == "search":
        if not args.query.strip():
            parser.error("--query is required in search mode")
        session = _build_session(config, prompts, args.interactive_key)
        return asyncio.run(run_search(session, args.query, language=args.language))

    if not args.image_path:
        parser.error("--image-path is required in solve mode")
    session = _build_session(config, prompts, args.interactive_key)
    return asyncio.run(
        run_solve(
            session,
            args.image_path,
            media_type=args.image_media_type,
            video=args.video,
            language=args.language,
        )
    )


if __name__ == "__main__":
    raise SystemExit(main())
