"""Test the command-line interface."""

import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner
from pydantic import SecretStr

from adaptor_swap import curve
from adaptor_swap.cli import cli


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"


@pytest.fixture
def mock_config(proposer_signer, database_url):
    """Configuration for the proposer's local key."""
    with patch("adaptor_swap.cli.config") as mock_config:
        mock_config.private_key = SecretStr(curve.hex_from_int(proposer_signer.secret))
        mock_config.vault = "self"
        mock_config.vault_key = None
        mock_config.database_url = database_url
        mock_config.log_level = "WARNING"
        yield mock_config


def json_lines(output: str) -> list[dict]:
    return [json.loads(line) for line in output.splitlines() if line.startswith("{")]


class TestCli:
    """Test CLI commands end to end against a scratch database."""

    def test_propose_then_status(self, mock_config, tmp_path, counterparty, give_template, take_template):
        """A new proposal is stored and reported as waiting for a nonce."""
        give_path = tmp_path / "give.json"
        take_path = tmp_path / "take.json"
        give_path.write_text(give_template.model_dump_json())
        take_path.write_text(take_template.model_dump_json())
        runner = CliRunner()

        result = runner.invoke(
            cli,
            ["propose", "--to", counterparty.pubkey, "--give", str(give_path), "--take", str(take_path)],
        )
        assert result.exit_code == 0, result.output
        (event,) = json_lines(result.output)
        assert event["kind"] == 455

        result = runner.invoke(cli, ["status", event["id"]])
        assert result.exit_code == 0, result.output
        assert "nonce-pending" in result.output

        result = runner.invoke(cli, ["list", "--mine"])
        assert event["id"] in result.output

    def test_ingest_transcript(self, mock_config, tmp_path, transcript, proposal):
        """Ingested relay records drive the derived state."""
        dump = tmp_path / "records.json"
        dump.write_text(json.dumps([e.model_dump() for e in transcript.values()] + [{"bogus": 1}]))
        runner = CliRunner()

        result = runner.invoke(cli, ["ingest", str(dump)])
        assert result.exit_code == 0, result.output
        assert "Stored 5 new record(s), skipped 1" in result.output

        result = runner.invoke(cli, ["status", proposal.id])
        assert "completed" in result.output

    def test_unknown_proposal(self, mock_config):
        result = CliRunner().invoke(cli, ["status", "ab" * 32])

        assert result.exit_code != 0
        assert "has not been observed" in result.output

    def test_adapt_requires_nonce(self, mock_config, tmp_path, proposal):
        """Steps out of order fail cleanly."""
        dump = tmp_path / "proposal.json"
        dump.write_text(proposal.event.model_dump_json())
        runner = CliRunner()
        runner.invoke(cli, ["ingest", str(dump)])

        result = runner.invoke(cli, ["adapt", proposal.id])

        assert result.exit_code != 0
        assert "nonce-pending" in result.output


def act_as(mock_config, signer):
    mock_config.private_key = SecretStr(curve.hex_from_int(signer.secret))


class TestCliSwap:
    """Test the full swap driven through the CLI by both parties."""

    def invoke(self, runner, *args):
        result = runner.invoke(cli, list(args))
        assert result.exit_code == 0, result.output
        return result

    def test_full_swap(
        self, mock_config, tmp_path, proposer_signer, counterparty_signer, give_template, take_template
    ):
        """Both parties share one log and take turns until the swap completes."""
        give_path = tmp_path / "give.json"
        take_path = tmp_path / "take.json"
        give_path.write_text(give_template.model_dump_json())
        take_path.write_text(take_template.model_dump_json())
        runner = CliRunner()

        act_as(mock_config, proposer_signer)
        result = self.invoke(
            runner,
            "propose", "--to", counterparty_signer.pubkey,
            "--give", str(give_path), "--take", str(take_path),
        )
        (proposal,) = json_lines(result.output)
        proposal_id = proposal["id"]

        act_as(mock_config, counterparty_signer)
        (nonce,) = json_lines(self.invoke(runner, "accept", proposal_id).output)
        assert nonce["kind"] == 456

        act_as(mock_config, proposer_signer)
        (adaptor,) = json_lines(self.invoke(runner, "adapt", proposal_id).output)
        assert adaptor["kind"] == 457

        act_as(mock_config, counterparty_signer)
        (given,) = json_lines(self.invoke(runner, "give", proposal_id).output)
        assert given["pubkey"] == proposer_signer.pubkey

        act_as(mock_config, proposer_signer)
        (taken,) = json_lines(self.invoke(runner, "take", proposal_id).output)
        assert taken["pubkey"] == counterparty_signer.pubkey
        assert taken["sig"][:64] == json.loads(nonce["content"])["nonce"]

        result = self.invoke(runner, "status", proposal_id)
        assert "State: completed" in result.output

    def test_revoke(self, mock_config, tmp_path, proposal, proposer_signer):
        dump = tmp_path / "proposal.json"
        dump.write_text(proposal.event.model_dump_json())
        runner = CliRunner()
        act_as(mock_config, proposer_signer)
        self.invoke(runner, "ingest", str(dump))

        (deletion,) = json_lines(self.invoke(runner, "revoke", proposal.id).output)

        assert deletion["kind"] == 5
        assert "State: revoked" in self.invoke(runner, "status", proposal.id).output

    def test_give_refuses_tampered_adaptor(
        self, mock_config, tmp_path, transcript, proposer_signer, counterparty_signer
    ):
        """The counterparty is warned off an adaptor that fails verification."""
        adaptor = transcript["adaptor"]
        content = json.loads(adaptor.content)
        sa = int(content["adaptors"][0]["sa"], 16)
        content["adaptors"][0]["sa"] = curve.hex_from_int((sa + 1) % curve.N)
        tampered = proposer_signer.sign_event(
            adaptor.template().model_copy(update={"content": json.dumps(content)})
        )
        dump = tmp_path / "records.json"
        dump.write_text(
            json.dumps([e.model_dump() for e in (transcript["proposal"], transcript["nonce"], tampered)])
        )
        runner = CliRunner()
        self.invoke(runner, "ingest", str(dump))
        act_as(mock_config, counterparty_signer)

        result = runner.invoke(cli, ["give", transcript["proposal"].id])

        assert result.exit_code != 0
        assert "cannot be trusted" in result.output

    def test_ingest_rejects_non_json(self, mock_config, tmp_path):
        dump = tmp_path / "records.json"
        dump.write_text("this is not json")

        result = CliRunner().invoke(cli, ["ingest", str(dump)])

        assert result.exit_code != 0
        assert "is not JSON" in result.output
