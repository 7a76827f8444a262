"""CLI entry point for sat-practice.

Usage:
  python -m sat_practice serve [--port PORT] [--host HOST]
  python -m sat_practice generate [--type TYPE] [--count N] [--difficulty LEVEL]
  python -m sat_practice etymology WORD
  python -m sat_practice random-word
  python -m sat_practice migrate
  python -m sat_practice stats --user USER_ID
"""
from __future__ import annotations

import asyncio
import json
import sys


def main():
    args = sys.argv[1:]
    command = args[0] if args else "serve"

    if command == "serve":
        _serve(args[1:])
    elif command == "generate":
        _generate(args[1:])
    elif command == "etymology":
        _etymology(args[1:])
    elif command == "random-word":
        _random_word()
    elif command == "migrate":
        _migrate()
    elif command == "stats":
        _stats(args[1:])
    else:
        print(f"Unknown command: {command}")
        print("Commands: serve, generate, etymology, random-word, migrate, stats")
        sys.exit(1)


def _parse_flag(args: list[str], name: str, default: str) -> str:
    for i, a in enumerate(args):
        if a == name and i + 1 < len(args):
            return args[i + 1]
    return default


def _serve(args: list[str]):
    import uvicorn

    port = int(_parse_flag(args, "--port", "8765"))
    host = _parse_flag(args, "--host", "127.0.0.1")
    print(f"Starting SAT Practice on http://{host}:{port}")
    print("Press Ctrl+C to stop\n")
    uvicorn.run(
        "sat_practice.app:app",
        host=host,
        port=port,
        reload=False,
        timeout_graceful_shutdown=5,
    )


def _llm():
    from sat_practice.config import load_settings
    from sat_practice.errors import ConfigError
    from sat_practice.services import build_llm

    settings = load_settings()
    try:
        return settings, build_llm(settings)
    except ConfigError as e:
        print(f"Configuration error: {e}")
        sys.exit(1)


def _generate(args: list[str]):
    from sat_practice.errors import GenerationError
    from sat_practice.models import DIFFICULTIES, QUESTION_TYPES
    from sat_practice.question_generator import generate_many

    question_type = _parse_flag(args, "--type", "reading")
    count = int(_parse_flag(args, "--count", "1"))
    settings, llm = _llm()
    difficulty = _parse_flag(args, "--difficulty", settings.default_difficulty)
    if question_type not in QUESTION_TYPES:
        print(f"Unknown type: {question_type} (choose from {', '.join(QUESTION_TYPES)})")
        sys.exit(1)
    if difficulty not in DIFFICULTIES:
        print(f"Unknown difficulty: {difficulty} (choose from {', '.join(DIFFICULTIES)})")
        sys.exit(1)

    print(f"Generating {count} {question_type} question(s) using {llm.name()}...")
    try:
        questions = asyncio.run(generate_many(llm, question_type, count, difficulty))
    except GenerationError as e:
        print(f"Generation failed: {e}")
        sys.exit(1)

    for i, q in enumerate(questions, 1):
        print(f"\n[{i}] {q.question}")
        for opt in q.options:
            marker = "*" if opt == q.correct_answer else " "
            print(f"  {marker} {opt}")
        print(f"  → {q.explanation}")


def _etymology(args: list[str]):
    from sat_practice.errors import GenerationError
    from sat_practice.etymology import analyze_word

    if not args:
        print("Usage: python -m sat_practice etymology WORD")
        sys.exit(1)
    _, llm = _llm()
    try:
        etymology = asyncio.run(analyze_word(llm, args[0]))
    except GenerationError as e:
        print(f"Failed to analyze word: {e}")
        sys.exit(1)
    print(json.dumps(etymology.to_dict(), indent=2, ensure_ascii=False))


def _random_word():
    from sat_practice.etymology import random_word

    print(json.dumps(random_word().to_dict(), indent=2, ensure_ascii=False))


def _migrate():
    from sat_practice.config import load_settings
    from sat_practice.db import Database

    settings = load_settings()
    db = Database(settings.db_full_path)
    n = db.migrate_legacy_questions()
    print(f"Migrated {n} test(s) to the plain question encoding.")
    db.close()


def _stats(args: list[str]):
    from sat_practice.config import load_settings
    from sat_practice.db import Database

    user_id = _parse_flag(args, "--user", "")
    if not user_id:
        print("Usage: python -m sat_practice stats --user USER_ID")
        sys.exit(1)

    settings = load_settings()
    db = Database(settings.db_full_path)
    stats = db.get_user_stats(user_id)
    user = db.get_user(user_id) or {}
    progress = user.get("progress", {})

    print(f"SAT Practice Stats ({user_id})")
    print("=" * 40)
    print(f"Sessions completed: {stats['session_count']}")
    print(f"Questions answered: {stats['total_questions']}")
    print(f"Correct answers:    {stats['correct_answers']}")
    print(f"Overall accuracy:   {stats['accuracy']}%")
    print(f"Practice time:      {round(stats['practice_time'] / 60)} min")
    for section, value in progress.items():
        print(f"Progress {section:<10} {value}%")
    print(f"Tests:              {len(db.list_tests(user_id))}")
    db.close()


if __name__ == "__main__":
    main()
