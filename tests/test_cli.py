"""CLI tests driven through click's test runner."""

import json
import re
import subprocess

import pytest
from click.testing import CliRunner

from walletguard.cli import main


SECRET = "cli-test-secret"


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def awg(runner, tmp_path):
    def invoke(*args, env=None):
        return runner.invoke(main, ["--dir", str(tmp_path), *args], env=env)
    return invoke


def _code(output: str) -> str:
    match = re.search(r"\*\*(\d+)\*\*", output)
    assert match, output
    return match.group(1)


@pytest.fixture
def wallet(awg):
    assert awg("init").exit_code == 0
    assert awg("allowlist", "add", "0xABCD", "--label", "Test").exit_code == 0
    return awg


def test_init_creates_config_once(awg, tmp_path):
    result = awg("init")
    assert result.exit_code == 0
    assert "Created config" in result.output
    assert (tmp_path / "config.json").exists()
    assert "already exists" in awg("init").output


def test_allowlist_commands(wallet):
    listed = wallet("allowlist", "list")
    assert "Test" in listed.output
    assert "0xabcd" in listed.output

    dup = wallet("allowlist", "add", "0xabcd")
    assert "already in allowlist" in dup.output

    assert "Removed" in wallet("allowlist", "remove", "0xABCD").output
    assert "not found" in wallet("allowlist", "remove", "0xABCD").output
    assert "No addresses" in wallet("allowlist", "list").output


def test_send_and_confirm_without_execution(wallet, tmp_path):
    sent = wallet("send", "10", "0xABCD")
    assert sent.exit_code == 0
    assert "Confirm send of $10 USDC to 0xABCD" in sent.output

    confirmed = wallet("confirm", _code(sent.output), "--no-execute")
    assert confirmed.exit_code == 0
    assert "Approved! Sending $10 USDC to 0xABCD" in confirmed.output
    assert "Executing" not in confirmed.output

    state = json.loads((tmp_path / "state.json").read_text())
    assert state["dailyTotal"] == 10


def test_confirm_runs_awal(wallet, monkeypatch):
    calls = []

    def fake_run(args, **kwargs):
        calls.append(args)
        return subprocess.CompletedProcess(args, 0, stdout="sent", stderr="")

    monkeypatch.setattr(subprocess, "run", fake_run)
    sent = wallet("send", "2.5", "0xABCD")
    result = wallet("confirm", _code(sent.output))
    assert result.exit_code == 0
    assert "Executing via awal" in result.output
    assert calls == [["npx", "awal", "send", "2.5", "0xABCD", "--json"]]


def test_send_rejections_exit_nonzero(wallet):
    over = wallet("send", "999", "0xABCD")
    assert over.exit_code == 1
    assert "per-transaction limit" in over.output

    unknown = wallet("send", "1", "0xNOPE")
    assert unknown.exit_code == 1
    assert "not in allowlist" in unknown.output

    bad = wallet("send", "lots", "0xABCD")
    assert bad.exit_code == 1
    assert "Invalid amount" in bad.output


def test_wrong_code_exit_nonzero(wallet):
    sent = wallet("send", "1", "0xABCD")
    code = _code(sent.output)
    wrong = "100000" if code != "100000" else "100001"
    result = wallet("confirm", wrong, "--no-execute")
    assert result.exit_code == 1
    assert "2 attempt(s) remaining" in result.output


def test_sender_option(wallet):
    wallet("config", "set", "cooldown.betweenTransactions", "0")
    sent = wallet("send", "1", "0xABCD", "--sender", "imessage:+1234")
    result = wallet("confirm", _code(sent.output), "--sender", "imessage:+9999", "--no-execute")
    assert result.exit_code == 1
    assert "Sender mismatch" in result.output

    bad = wallet("send", "1", "0xABCD", "--sender", "nocolon")
    assert bad.exit_code == 2


def test_freeze_blocks_send_until_unfrozen(wallet):
    assert "FROZEN" in wallet("freeze", "lost_phone").output
    status = wallet("status")
    assert "lost_phone" in status.output

    blocked = wallet("send", "1", "0xABCD")
    assert blocked.exit_code == 1
    assert "🛑" in blocked.output

    assert "unfrozen" in wallet("unfreeze").output
    assert wallet("send", "1", "0xABCD").exit_code == 0


def test_status_output(wallet):
    wallet("send", "5", "0xABCD")
    result = wallet("status")
    assert result.exit_code == 0
    assert "Frozen:          ✅ No" in result.output
    assert "Daily limit:     $200" in result.output
    assert "$5 USDC → 0xABCD" in result.output


def test_config_show_and_set(wallet):
    shown = json.loads(wallet("config").output)
    assert shown["limits"]["dailyMax"] == 200

    result = wallet("config", "set", "limits.dailyMax", "500")
    assert result.exit_code == 0
    assert json.loads(wallet("config", "show").output)["limits"]["dailyMax"] == 500

    bad = wallet("config", "set", "limits.nope", "1")
    assert bad.exit_code == 1
    assert "Unknown config key" in bad.output


def test_log_lists_entries(wallet):
    wallet("send", "999", "0xABCD")
    wallet("freeze")
    result = wallet("log", "--action", "rejected")
    assert "rejected $999 → 0xABCD (over_per_tx_limit)" in result.output
    assert "freeze" not in result.output


def test_log_empty(awg):
    assert "No audit entries" in awg("log").output


class TestIntegrityCommands:
    def test_verify_without_secret_warns(self, wallet):
        result = wallet("integrity", "verify")
        assert result.exit_code == 0
        assert "disabled" in result.output

    def test_sign_requires_secret(self, wallet):
        assert wallet("integrity", "sign").exit_code == 1

    def test_sign_then_verify(self, wallet):
        env = {"AWG_INTEGRITY_SECRET": SECRET}
        assert wallet("integrity", "sign", env=env).exit_code == 0
        result = wallet("integrity", "verify", env=env)
        assert result.exit_code == 0
        assert "❌" not in result.output

    def test_tampering_aborts_commands_with_exit_2(self, wallet, tmp_path):
        env = {"AWG_INTEGRITY_SECRET": SECRET}
        wallet("integrity", "sign", env=env)
        doc = json.loads((tmp_path / "config.json").read_text())
        doc["limits"]["perTransaction"] = 1_000_000
        (tmp_path / "config.json").write_text(json.dumps(doc))

        verify = wallet("integrity", "verify", env=env)
        assert verify.exit_code == 2
        assert "❌ config.json" in verify.output

        send = wallet("send", "5000", "0xABCD", env=env)
        assert send.exit_code == 2
        assert "INTEGRITY FAILURE" in send.output
