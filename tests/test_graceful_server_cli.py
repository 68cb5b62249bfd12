"""
Tests for the echo server command line entry point.
"""

import asyncio
from unittest.mock import Mock, patch

import pytest

from graceful_server_cli import build_options, echo_handler, main, parse_args
from shutdown_config import ENV_DEVELOPMENT, ENV_SIGNALS, ENV_TIMEOUT, ErrorPolicy
from server_handle import ServerEventListener, StreamServerHandle


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in (ENV_SIGNALS, ENV_TIMEOUT, ENV_DEVELOPMENT):
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    # Keep a stray .env in the working directory out of the picture
    monkeypatch.chdir(tmp_path)
    return monkeypatch


class TestArguments:

    def test_defaults(self):
        args = parse_args([])

        assert args.host == "127.0.0.1"
        assert args.port == 8080
        assert args.timeout is None
        assert args.signals is None
        assert args.development is None
        assert args.log_level == "INFO"

    def test_options_from_arguments(self, clean_env):
        args = parse_args(["--timeout", "3", "--signals", "SIGTERM", "--development", "--log-errors"])

        options = build_options(args)

        assert options.timeout == 3.0
        assert options.signal_names == ["SIGTERM"]
        assert options.development is True
        assert options.error_policy is ErrorPolicy.LOG

    def test_arguments_override_environment(self, clean_env):
        clean_env.setenv(ENV_TIMEOUT, "12")
        clean_env.setenv(ENV_SIGNALS, "SIGHUP")

        options = build_options(parse_args(["--timeout", "0"]))

        assert options.timeout == 0
        assert options.signal_names == ["SIGHUP"]
        assert options.development is False

    def test_invalid_configuration_exits(self, clean_env):
        with patch("graceful_server_cli.setup_shutdown_logger", return_value=Mock()), \
             pytest.raises(SystemExit) as excinfo:
            main(["--timeout", "-5"])

        assert excinfo.value.code == 2


class TestEchoHandler:

    @pytest.mark.asyncio
    async def test_each_line_is_one_request(self, test_logger):
        server = StreamServerHandle(echo_handler, logger=test_logger)
        listener = Mock(spec=ServerEventListener)
        server.subscribe(listener)
        await server.start()
        try:
            reader, writer = await asyncio.open_connection(server.host, server.port)
            writer.write(b"one\ntwo\n")
            await writer.drain()

            assert await asyncio.wait_for(reader.readline(), 2) == b"one\n"
            assert await asyncio.wait_for(reader.readline(), 2) == b"two\n"

            writer.close()
            await writer.wait_closed()
            for _ in range(200):
                if listener.on_connection_close.called:
                    break
                await asyncio.sleep(0.01)

            assert listener.on_request_start.call_count == 2
            assert listener.on_request_finish.call_count == 2
        finally:
            server._server.close()
