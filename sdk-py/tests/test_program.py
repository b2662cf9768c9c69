"""Tests for program (function) provisioning."""

import io
import zipfile
from decimal import Decimal

import pytest

from aleph_cloud_sdk.constants import DEFAULT_API_SERVER, RUNTIME_DEBIAN
from aleph_cloud_sdk.errors import CustomRuntimeNeeded, InvalidCodeFile, StreamNotSupported
from aleph_cloud_sdk.factory import create_managers
from aleph_cloud_sdk.fields import DomainField, EnvVarField, PaymentConfig, Specs, VolumeField
from aleph_cloud_sdk.program import CodeField, ProgramRequest, parse_code

from conftest import NOW, USER_ADDRESS, FakePricing, FakeResponse


@pytest.fixture
def pricing():
    return FakePricing(
        {
            "cost": "0",
            "detail": [
                {"type": "EXECUTION", "name": "compute", "cost_hold": "200"},
                {"type": "EXECUTION_PROGRAM_VOLUME_CODE", "name": "code", "cost_hold": "3"},
                {"type": "EXECUTION_PROGRAM_VOLUME_RUNTIME", "name": "runtime", "cost_hold": "4"},
                {"type": "EXECUTION_VOLUME_DISCOUNT", "name": "discount", "cost_hold": "-5"},
            ],
        }
    )


@pytest.fixture
def manager(client, pricing, config, session):
    return create_managers(client, pricing=pricing, config=config, session=session).program_manager


def text_request(**kwargs):
    return ProgramRequest(code=CodeField.from_text("app = None"), specs=Specs(cpu=1, ram=2048), name="fn", **kwargs)


class TestParseCode:
    """Test the code section of program messages."""

    def test_inline_source_zipped(self):
        """Test that inline python source becomes main.py in a zip."""
        code = parse_code(CodeField.from_text("print('hi')"))
        assert code["entrypoint"] == "main:app"
        assert code["encoding"] == "zip"
        with zipfile.ZipFile(io.BytesIO(code["file"])) as archive:
            assert archive.read("main.py") == b"print('hi')"

    def test_inline_javascript(self):
        """Test that javascript source becomes main.js."""
        code = parse_code(CodeField.from_text("module.exports = {}", lang="javascript"))
        with zipfile.ZipFile(io.BytesIO(code["file"])) as archive:
            assert archive.namelist() == ["main.js"]

    def test_archive_encodings(self):
        """Test zip and squashfs uploads."""
        assert parse_code(CodeField.from_file(b"PK", "app.zip", "main:app"))["encoding"] == "zip"
        assert parse_code(CodeField.from_file(b"hsqs", "app.sqsh", "main:app"))["encoding"] == "squashfs"

    def test_invalid_archive(self):
        """Test unsupported or missing archives."""
        with pytest.raises(InvalidCodeFile):
            parse_code(CodeField.from_file(b"data", "app.tar", "main:app"))
        with pytest.raises(InvalidCodeFile):
            parse_code(CodeField(type="file", file_name="app.zip"))

    def test_stored_code(self):
        """Test referencing an already stored code volume."""
        code = parse_code(CodeField.from_ref("ref-1", "main:app"))
        assert code == {"entrypoint": "main:app", "encoding": "zip", "program_ref": "ref-1"}


class TestProgramAdd:
    """Test the program creation workflow."""

    def test_plan_matches_execution(self, manager):
        """Test that planned steps are the steps the workflow yields."""
        request = text_request(
            volumes=[VolumeField.new(b"lib", "/opt/lib")],
            domains=[DomainField(name="fn.example.org", target="program")],
        )
        plan = manager.get_add_steps(request)
        assert plan == ["volume", "program", "domain"]
        assert list(manager.add_steps(request)) == plan

    def test_published_config(self, manager, client):
        """Test the program message content."""
        request = text_request(env_vars=[EnvVarField("MODE", "prod")], is_persistent=True, tags=["api"])
        program = manager.add(request)

        (call,) = client.calls
        _, item_hash, config = call
        assert program.id == item_hash
        assert config["runtime"] == RUNTIME_DEBIAN
        assert config["persistent"] is True
        assert config["vcpus"] == 1
        assert config["memory"] == 2048
        assert config["variables"] == {"MODE": "prod"}
        assert config["metadata"] == {"name": "fn", "tags": ["api"]}
        assert config["payment"] == {"chain": "ETH", "type": "hold"}
        assert config["encoding"] == "zip"
        assert program.is_persistent

    def test_domain_points_at_program(self, manager, client):
        """Test that domains are linked to the new program."""
        program = manager.add(text_request(domains=[DomainField(name="fn.example.org", target="program")]))
        _, key, content = client.calls[1]
        assert key == "domains"
        assert content["fn.example.org"]["message_id"] == program.id
        assert content["fn.example.org"]["type"] == "program"

    def test_custom_runtime_needed(self, manager, client):
        """Test an unknown language without a runtime."""
        request = ProgramRequest(code=CodeField.from_text("x", lang="rust"), specs=Specs(cpu=1, ram=2048))
        with pytest.raises(CustomRuntimeNeeded):
            manager.add(request)

        with_runtime = ProgramRequest(code=CodeField.from_ref("ref-1", "main"), specs=Specs(cpu=1, ram=2048), runtime="rt-1")
        manager.add(with_runtime)
        assert client.calls[0][2]["runtime"] == "rt-1"

    def test_stream_not_supported_on_ethereum(self, manager, client):
        """Test that payment validation runs before publishing."""
        request = text_request(payment=PaymentConfig.stream("ETH", "0xreceiver", "1"))
        with pytest.raises(StreamNotSupported):
            manager.add(request)
        assert client.calls == []


class TestProgramDelete:
    """Test the program deletion workflow."""

    @pytest.fixture
    def program_id(self, client):
        client.messages.append(
            {
                "item_hash": "fn-1",
                "type": "PROGRAM",
                "chain": "ETH",
                "sender": USER_ADDRESS,
                "time": NOW,
                "content": {"code": {"ref": "code-ref-1"}, "on": {"http": True}, "metadata": {"name": "fn"}},
            }
        )
        return "fn-1"

    def test_code_volume_forgotten_first(self, manager, client, program_id):
        """Test that the code volume is forgotten before the program."""
        plan = manager.get_del_steps(program_id)
        assert plan == ["volumeDel", "programDel"]
        assert list(manager.del_steps(program_id)) == plan
        assert client.calls == [("forget", ["code-ref-1"]), ("forget", ["fn-1"])]

    def test_listing(self, manager, program_id):
        """Test reading back programs."""
        (program,) = manager.get_all()
        assert program.name == "fn"
        assert program.ref_url == "/storage/volume/code-ref-1"
        assert program.url_vm.endswith("fn-1")
        assert not program.is_persistent

    def test_download(self, manager, client, session, program_id):
        """Test fetching the raw code archive."""
        client.messages.append({"item_hash": "code-ref-1", "type": "STORE", "content": {"item_hash": "file-1"}})
        session.route("GET", f"{DEFAULT_API_SERVER}/api/v0/storage/raw/file-1", FakeResponse(200, content=b"PK-archive"))

        assert manager.download(manager.get(program_id)) == b"PK-archive"


class TestProgramCost:
    """Test program cost estimates."""

    def test_discount_cascade(self, manager, pricing):
        """Test that the discount flows from code to runtime volume."""
        summary = manager.get_cost(text_request())

        by_label = {line.label: line.cost for line in summary.lines if line.label}
        assert by_label == {"CODE": Decimal(0), "RUNTIME": Decimal(2)}
        assert summary.lines[-1].detail == "on-demand"
        assert summary.cost == Decimal(202)

        message_type, config = pricing.estimated[0]
        assert message_type == "PROGRAM"
        assert config["program_ref"]
        assert config["encoding"] == "zip"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
