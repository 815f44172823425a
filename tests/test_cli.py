"""
Tests for the command-line interface.

Commands run through click's CliRunner in an isolated directory without oracle
credentials, so every classification is rules-only.
"""

import json

import pytest
import yaml
from click.testing import CliRunner

from call_decision.main import cli
from tests.factories import TranscriptFactory


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def call_file(isolated_env):
    path = isolated_env / "llamada.json"
    payload = {"call_id": "conv-cli", "transcript": TranscriptFactory.email_duplicate_call()}
    path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
    return path


@pytest.fixture
def rules_only_config(isolated_env):
    path = isolated_env / "config.yaml"
    path.write_text(yaml.safe_dump({"engine": {"use_oracle": False}}), encoding="utf-8")
    return path


class TestClassify:
    """Test the classify command."""

    def test_writes_decision_file(self, runner, call_file, isolated_env):
        output = isolated_env / "decision.json"
        result = runner.invoke(cli, ["classify", str(call_file), "--no-oracle", "-o", str(output)])

        assert result.exit_code == 0, result.output
        assert "✅ Solicitud duplicado póliza / Email" in result.output

        decision = json.loads(output.read_text(encoding="utf-8"))
        assert decision["callId"] == "conv-cli"
        assert decision["incidenciaPrincipal"]["motivo"] == "Email"
        assert decision["datosExtraidos"]["email"] == "juan.perez@example.com"
        assert "senales" not in decision

    def test_call_id_override_and_signals(self, runner, call_file, isolated_env):
        output = isolated_env / "decision.json"
        result = runner.invoke(
            cli, ["classify", str(call_file), "--no-oracle", "--call-id", "manual", "--signals", "-o", str(output)]
        )

        assert result.exit_code == 0, result.output
        decision = json.loads(output.read_text(encoding="utf-8"))
        assert decision["callId"] == "manual"
        assert any(s["topic"] == "email_duplicate" for s in decision["senales"])

    def test_prints_to_stdout(self, runner, call_file):
        result = runner.invoke(cli, ["classify", str(call_file), "--no-oracle", "--compact"])

        assert result.exit_code == 0, result.output
        assert '"callId": "conv-cli"' in result.output

    def test_malformed_transcript(self, runner, isolated_env):
        path = isolated_env / "mala.json"
        path.write_text(json.dumps([{"speaker": "narrador", "message": "Hola"}]), encoding="utf-8")

        result = runner.invoke(cli, ["classify", str(path), "--no-oracle"])

        assert result.exit_code == 1
        assert "❌ Malformed transcript" in result.output

    def test_missing_file(self, runner, isolated_env):
        result = runner.invoke(cli, ["classify", "no-existe.json"])
        assert result.exit_code == 2


class TestBatch:
    """Test the batch command."""

    def test_classifies_directory(self, runner, isolated_env):
        calls = isolated_env / "calls"
        calls.mkdir()
        (calls / "a.json").write_text(json.dumps(TranscriptFactory.claims_call()), encoding="utf-8")
        (calls / "b.json").write_text(json.dumps(TranscriptFactory.empty_call()), encoding="utf-8")
        out = isolated_env / "out"

        result = runner.invoke(cli, ["batch", str(calls), "--no-oracle", "--output-dir", str(out)])

        assert result.exit_code == 0, result.output
        assert "2/2 calls classified" in result.output
        assert sorted(p.name for p in out.iterdir()) == ["a.decision.json", "b.decision.json"]

    def test_failure_sets_exit_code(self, runner, isolated_env):
        calls = isolated_env / "calls"
        calls.mkdir()
        (calls / "ok.json").write_text(json.dumps(TranscriptFactory.claims_call()), encoding="utf-8")
        (calls / "bad.json").write_text(json.dumps([{"speaker": "?", "message": "x"}]), encoding="utf-8")

        result = runner.invoke(cli, ["batch", str(calls), "--no-oracle"])

        assert result.exit_code == 1
        assert "❌ bad:" in result.output
        assert "1/2 calls classified" in result.output

    def test_invalid_json_file_does_not_stop_batch(self, runner, isolated_env):
        calls = isolated_env / "calls"
        calls.mkdir()
        (calls / "a_roto.json").write_text("{no es json", encoding="utf-8")
        (calls / "b_ok.json").write_text(json.dumps(TranscriptFactory.claims_call()), encoding="utf-8")
        out = isolated_env / "out"

        result = runner.invoke(cli, ["batch", str(calls), "--no-oracle", "--output-dir", str(out)])

        assert result.exit_code == 1
        assert "❌ a_roto:" in result.output
        assert "not valid JSON" in result.output
        assert "✅ b_ok:" in result.output
        assert "1/2 calls classified" in result.output
        assert [p.name for p in out.iterdir()] == ["b_ok.decision.json"]

    def test_empty_directory(self, runner, isolated_env):
        (isolated_env / "vacio").mkdir()
        result = runner.invoke(cli, ["batch", str(isolated_env / "vacio")])

        assert result.exit_code == 0
        assert "No *.json files found" in result.output


class TestTaxonomyCommands:
    """Test taxonomy list, validate and reload."""

    def test_list(self, runner, isolated_env, taxonomy):
        result = runner.invoke(cli, ["taxonomy", "list"])

        assert result.exit_code == 0, result.output
        assert f"📋 Taxonomy ({len(taxonomy)} entries" in result.output
        assert "T0 Llamada gestión comercial / Reenvío agentes humanos no quiere IA [human, IA]" in result.output

    def test_list_by_tipo(self, runner, isolated_env):
        result = runner.invoke(cli, ["taxonomy", "list", "--tipo", "Nueva contratación de seguros"])

        assert "📋 Taxonomy (2 entries" in result.output
        assert "Contratación Póliza [ramo]" in result.output

    def test_validate(self, runner, isolated_env):
        good = isolated_env / "good.yaml"
        good.write_text(
            "entries:\n" + "".join(
                f"  - tipo: Llamada gestión comercial\n    motivo: {m}\n"
                for m in (
                    "Reenvío agentes humanos no quiere IA",
                    "Reenvío agentes humanos no tomador",
                    "Reenvío agentes humanos",
                    "Reenvío siniestros",
                    "LLam gestión comerc",
                )
            ) + "  - tipo: Modificación póliza emitida\n    motivo: Datos incompletos\n",
            encoding="utf-8",
        )
        bad = isolated_env / "bad.yaml"
        bad.write_text("entries:\n  - tipo: Solo tipo\n", encoding="utf-8")

        ok_result = runner.invoke(cli, ["taxonomy", "validate", str(good)])
        bad_result = runner.invoke(cli, ["taxonomy", "validate", str(bad)])

        assert ok_result.exit_code == 0
        assert "✅ Taxonomy is valid (6 entries)" in ok_result.output
        assert bad_result.exit_code == 1
        assert "❌ Invalid taxonomy" in bad_result.output

    def test_reload_failure_keeps_snapshot(self, runner, isolated_env):
        missing = isolated_env / "missing.yaml"
        result = runner.invoke(cli, ["taxonomy", "reload", "--path", str(missing)])

        assert result.exit_code == 1
        assert "keeping current taxonomy" in result.output

    def test_reload(self, runner, isolated_env, taxonomy):
        result = runner.invoke(cli, ["taxonomy", "reload"])

        assert result.exit_code == 0, result.output
        assert f"✅ Taxonomy reloaded ({len(taxonomy)} entries" in result.output


class TestConfigCheck:
    """Test the config-check command."""

    def test_missing_keys(self, runner, isolated_env):
        result = runner.invoke(cli, ["config-check"])

        assert result.exit_code == 1
        assert "Gemini API: Not set" in result.output
        assert "use_oracle is enabled" in result.output

    def test_rules_only_valid(self, runner, rules_only_config):
        result = runner.invoke(cli, ["config-check"])

        assert result.exit_code == 0, result.output
        assert "Oracle: Disabled" in result.output
        assert "✅ Configuration is valid" in result.output
