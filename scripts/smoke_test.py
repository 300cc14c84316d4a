#!/usr/bin/env python3
"""
Smoke Test Script

Validates configuration and connectivity without opening a chat session.

Checks:
1. Dependencies are importable
2. Configuration validates (without printing secrets)
3. The ElevenLabs voice resolves (name lookup or configured id)
4. The assistant endpoint answers
5. FastAPI app starts and /health returns OK
"""

import asyncio
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def print_header(text: str) -> None:
    """Print a section header."""
    print(f"\n{'=' * 50}")
    print(f" {text}")
    print('=' * 50)


def print_ok(text: str) -> None:
    print(f"  [OK] {text}")


def print_error(text: str) -> None:
    print(f"  [ERR] {text}")


def print_warn(text: str) -> None:
    print(f"  [WARN] {text}")


def check_dependencies() -> bool:
    """Check that required dependencies are importable."""
    print_header("Checking Dependencies")

    dependencies = [
        ("fastapi", "FastAPI"),
        ("uvicorn", "Uvicorn"),
        ("websockets", "WebSockets"),
        ("openai", "OpenAI SDK"),
        ("structlog", "Structlog"),
        ("msgspec", "msgspec"),
        ("httpx", "HTTPX"),
        ("dotenv", "python-dotenv"),
    ]

    all_ok = True
    for module, name in dependencies:
        try:
            __import__(module)
            print_ok(name)
        except ImportError as e:
            print_error(f"{name}: {e}")
            all_ok = False
    return all_ok


def check_config() -> bool:
    """Validate configuration."""
    print_header("Checking Configuration")

    from src.voice.config import ConfigError, get_config

    config = get_config()
    try:
        config.validate()
    except ConfigError as e:
        print_error(str(e))
        return False

    print_ok(f"CAPTURE_PROVIDER: {config.capture_provider}")
    print_ok(f"TTS: {config.tts_primary} (fallback: {config.tts_fallback})")
    print_ok(f"ASSISTANT_PROVIDER: {config.assistant_provider}")
    print_ok(f"SILENCE_COMMIT_MS: {config.silence_commit_ms}")
    return True


async def check_elevenlabs_voice() -> bool:
    """Resolve the configured ElevenLabs voice."""
    print_header("Resolving ElevenLabs Voice")

    from src.voice.config import get_config
    from src.voice.tts_providers.elevenlabs import ElevenLabsTTS

    config = get_config()
    if "elevenlabs" not in (config.tts_primary, config.tts_fallback):
        print_warn("ElevenLabs not in use, skipping")
        return True

    tts = ElevenLabsTTS(config)
    try:
        voice_id = await tts.resolve_voice_id()
        print_ok(f"Voice id: {voice_id}")
        return True
    except Exception as e:
        print_error(f"Voice lookup failed: {e}")
        return False
    finally:
        await tts.close()


async def check_assistant() -> bool:
    """Send a one-message query to the assistant."""
    print_header("Querying Assistant")

    from src.voice.assistant import create_assistant
    from src.voice.errors import AssistantQueryFailed

    client = create_assistant()
    try:
        chunks = []
        async for chunk in client.submit([{"role": "user", "content": "Say hello in three words."}]):
            chunks.append(chunk)
        reply = "".join(chunks).strip()
        if not reply:
            print_warn("Assistant returned an empty reply")
        else:
            print_ok(f"Reply: {reply[:60]}")
        return True
    except AssistantQueryFailed as e:
        print_error(str(e))
        return False
    finally:
        await client.close()


def check_health_endpoint() -> bool:
    """Check that the FastAPI /health endpoint works."""
    print_header("Testing Health Endpoint")

    try:
        from fastapi.testclient import TestClient
        from server.app import app

        with TestClient(app) as client:
            response = client.get("/health")

        if response.status_code == 200 and response.json().get("status") == "healthy":
            print_ok("Health endpoint returned healthy")
            return True
        print_error(f"Unexpected response: {response.status_code} {response.text[:100]}")
        return False
    except Exception as e:
        print_error(f"Failed to test health endpoint: {e}")
        return False


async def main() -> int:
    """Run all smoke tests."""
    print("\n" + "=" * 50)
    print(" DASHBOARD VOICE ASSISTANT - SMOKE TEST")
    print("=" * 50)

    results = []
    results.append(("Dependencies", check_dependencies()))
    config_ok = check_config()
    results.append(("Configuration", config_ok))
    if config_ok:
        results.append(("ElevenLabs Voice", await check_elevenlabs_voice()))
        results.append(("Assistant", await check_assistant()))
        results.append(("Health Endpoint", check_health_endpoint()))

    print_header("Summary")

    all_passed = True
    for name, passed in results:
        if passed:
            print_ok(name)
        else:
            print_error(name)
            all_passed = False

    print()
    if all_passed:
        print("[OK] All checks passed!")
        print("\nNext steps:")
        print("  1. Run 'python -m server.app' to start the server")
        print("  2. Point the dashboard chat at ws://localhost:7860/ws")
        return 0

    print("[ERR] Some checks failed. Please fix the issues above.")
    return 1


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
