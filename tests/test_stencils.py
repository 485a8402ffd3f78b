"""
Tests for the stencil catalog
"""

import json

from canvas_backend.stencils import StencilCatalog, StencilKind, instantiate_node
from canvas_core.models import Position


class TestStencilCatalog:
    """Tests for lookup and node instantiation"""

    def test_default_palettes(self):
        catalog = StencilCatalog()
        assert catalog.get("server-1").name == "Server"
        assert {s.stencil_type for s in catalog.list(StencilKind.PROCESS)} == {StencilKind.PROCESS}

    def test_instantiate_copies_defaults(self):
        stencil = StencilCatalog().get("database-1")
        node = instantiate_node(stencil, Position(x=10, y=20), parent_id="zone")

        assert node.id.startswith("database-1-")
        assert node.parent_id == "zone"
        assert node.data.properties["name"] == "Database"
        node.data.properties["Type"] = "MySQL"
        assert stencil.properties["Type"] == "PostgreSQL"

    def test_container_stencil_ignores_parent(self):
        node = instantiate_node(StencilCatalog().get("trust-boundary-1"), Position(), parent_id="zone")
        assert node.type == "boundary"
        assert node.parent_id is None
        assert node.data.connectable is False

    def test_from_json_file(self, tmp_path):
        path = tmp_path / "stencils.json"
        path.write_text(json.dumps([
            {"id": "vpn-1", "name": "VPN", "typeTag": "vpn", "iconName": "Lock"},
            {"id": "zone-1", "name": "Zone", "typeTag": "zone", "isBoundary": True},
        ]))
        catalog = StencilCatalog.from_json_file(path)
        assert [s.id for s in catalog.list()] == ["vpn-1", "zone-1"]
        assert catalog.get("zone-1").node_type == "boundary"
