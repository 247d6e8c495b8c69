import pytest
from typer.testing import CliRunner

from swapwatch.presentation.cli import app

runner = CliRunner()
V2_ROUTER = "0x10ed43c718714eb63d5aa57b78b54704e256024e"
WBNB = "0xbb4cdb9cbd36b01bd1cbaebf2de08d9173bc095c"
USDT = "0x55d398326f99059ff775485246999027b3197955"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for k in ("SWAPWATCH_RPC_URLS", "SWAPWATCH_WS_URLS", "TELEGRAM_BOT_TOKEN", "TELEGRAM_CHAT_ID"):
        monkeypatch.delenv(k, raising=False)


def w(v) -> str:
    return v[2:].rjust(64, "0") if isinstance(v, str) else v.to_bytes(32, "big").hex()


def test_decode_call_known_router():
    data = "0x7ff36ab5" + w(5) + w(0x80) + w("0x" + "a1" * 20) + w(1_700_000_000) + w(2) + w(WBNB) + w(USDT)
    res = runner.invoke(app, ["decode-call", V2_ROUTER, data])
    assert res.exit_code == 0, res.output
    assert "swapExactETHForTokens" in res.output
    assert "WBNB" in res.output and "USDT" in res.output


def test_decode_call_rejects_bad_hex():
    res = runner.invoke(app, ["decode-call", V2_ROUTER, "0xnothex"])
    assert res.exit_code == 2


def test_decode_call_unknown_selector():
    res = runner.invoke(app, ["decode-call", V2_ROUTER, "0xdeadbeef"])
    assert res.exit_code == 1


def test_watch_without_addresses_is_a_config_error():
    res = runner.invoke(app, ["watch"])
    assert res.exit_code == 2
    assert "config error" in res.output
