"""Tests for custom domains."""

import pytest

from aleph_cloud_sdk.constants import DNS_API_URL
from aleph_cloud_sdk.errors import DomainUsed, InvalidParameter
from aleph_cloud_sdk.fields import DomainField
from aleph_cloud_sdk.domain import DomainManager

from conftest import USER_ADDRESS, FakeResponse


@pytest.fixture
def manager(client, config, session):
    client.aggregates[(USER_ADDRESS, "domains")] = {
        "taken.example.org": {
            "message_id": "vm-old",
            "type": "instance",
            "programType": "instance",
            "updated_at": "2024-03-01T10:20:30.000Z",
        },
        "removed.example.org": None,
    }
    return DomainManager(client, config=config, session=session)


class TestDomainItems:
    """Test aggregate item building and parsing."""

    def test_instance_item(self, manager):
        """Test an instance target entry."""
        item = manager.build_item(DomainField(name="a.example.org", target="instance", ref="vm-1"))
        assert item["message_id"] == "vm-1"
        assert item["type"] == "instance"
        assert item["programType"] == "instance"
        assert "options" not in item

    def test_ipfs_item(self, manager):
        """Test that IPFS targets serve a catch-all page."""
        item = manager.build_item(DomainField(name="site.example.org", target="ipfs", ref="cid"))
        assert item["options"] == {"catch_all_path": "/404.html"}

    def test_confidential_item(self, manager):
        """Test that confidential targets are stored as flagged instances."""
        item = manager.build_item(DomainField(name="c.example.org", target="confidential", ref="vm-2"))
        assert item["type"] == "instance"
        assert item["options"] == {"confidential": True}

        domain = manager.parse_item("c.example.org", item)
        assert domain.target == "confidential"
        assert domain.ref_url == "/computing/confidential/vm-2"

    def test_ref_required(self, manager):
        """Test that a domain needs a target reference."""
        with pytest.raises(InvalidParameter):
            manager.build_item(DomainField(name="a.example.org"))

    def test_get_all_skips_deleted(self, manager):
        """Test that null entries are not listed."""
        (domain,) = manager.get_all()
        assert domain.name == "taken.example.org"
        assert domain.date == "2024-03-01 10:20:30"
        assert domain.ref_url == "/computing/instance/vm-old"


class TestCollisionPolicies:
    """Test throw, ignore and override."""

    def test_throw(self, manager, client):
        """Test that a taken name fails the whole request."""
        domains = [DomainField(name="new.example.org", ref="vm-1"), DomainField(name="taken.example.org", ref="vm-1")]
        with pytest.raises(DomainUsed) as excinfo:
            manager.add(domains)
        assert excinfo.value.name == "taken.example.org"
        assert client.calls == []

    def test_ignore(self, manager, client):
        """Test that taken names are dropped."""
        domains = [DomainField(name="new.example.org", ref="vm-1"), DomainField(name="taken.example.org", ref="vm-1")]
        created = manager.add(domains, "ignore")

        assert [d.name for d in created] == ["new.example.org"]
        (call,) = client.calls
        assert list(call[2]) == ["new.example.org"]

    def test_ignore_everything_taken(self, manager, client):
        """Test that nothing is published when every name is taken."""
        domains = [DomainField(name="taken.example.org", ref="vm-1")]
        assert manager.get_add_steps(domains, "ignore") == []
        assert manager.add(domains, "ignore") == []
        assert client.calls == []

    def test_override(self, manager, client):
        """Test that taken names are rewritten."""
        created = manager.add(DomainField(name="taken.example.org", ref="vm-new"), "override")
        assert created[0].ref == "vm-new"
        assert client.aggregates[(USER_ADDRESS, "domains")]["taken.example.org"]["message_id"] == "vm-new"

    def test_unknown_policy(self, manager):
        """Test an unknown collision policy."""
        with pytest.raises(InvalidParameter):
            manager.get_add_steps([DomainField(name="a.example.org", ref="x")], "merge")


class TestDomainWorkflows:
    """Test domain add, delete and rename workflows."""

    def test_add_suspends_before_publishing(self, manager, client):
        """Test the domain step."""
        seq = manager.add_steps(DomainField(name="new.example.org", ref="vm-1"))
        assert next(seq) == "domain"
        assert client.calls == []
        assert seq.run()[0].name == "new.example.org"

    def test_delete(self, manager, client):
        """Test that deleting writes null to the key."""
        assert manager.get_del_steps(["taken.example.org"]) == ["domainDel"]
        manager.delete("taken.example.org")
        assert client.calls == [("aggregate", "domains", {"taken.example.org": None})]
        assert manager.get_all() == []

    def test_delete_nothing(self, manager, client):
        """Test an empty delete request."""
        assert manager.get_del_steps([]) == []
        assert list(manager.del_steps([])) == []
        assert client.calls == []

    def test_rename(self, manager, client):
        """Test moving a domain entry to a new name."""
        (domain,) = manager.get_all()
        renamed = manager.update_name(domain, "renamed.example.org")

        assert renamed.name == "renamed.example.org"
        assert renamed.ref == "vm-old"
        content = client.calls[0][2]
        assert content["taken.example.org"] is None
        assert content["renamed.example.org"]["message_id"] == "vm-old"

    def test_check_status(self, manager, session):
        """Test the DNS check request."""
        session.route("POST", f"{DNS_API_URL}/domain/check", FakeResponse(200, {"status": True, "tasks_status": {}}))
        (domain,) = manager.get_all()

        assert manager.check_status(domain)["status"] is True
        assert session.calls[0]["json"] == {"name": "taken.example.org", "owner": USER_ADDRESS, "target": "instance"}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
