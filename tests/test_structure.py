"""
Structure lint tests.
Verify that every component follows the models/ports/component layout.
"""

from pathlib import Path

import pytest

from eventlens.adapters.registry import load_registry

PROJECT_ROOT = Path(__file__).parent.parent
PACKAGE = PROJECT_ROOT / "eventlens"

COMPONENTS = ["buckets", "filters", "funnels", "goals", "journeys", "metrics", "pagination"]


class TestProjectStructure:
    """Verify project structure follows component conventions."""

    def test_core_directories_exist(self) -> None:
        """Core functional directories must exist."""
        assert (PACKAGE / "core").is_dir()
        assert (PACKAGE / "core" / "ports").is_dir()
        assert (PACKAGE / "core" / "services").is_dir()

    def test_shell_directories_exist(self) -> None:
        """Adapters and the HTTP shell must exist."""
        assert (PACKAGE / "adapters").is_dir()
        assert (PACKAGE / "api" / "routes").is_dir()

    @pytest.mark.parametrize("name", COMPONENTS)
    def test_component_layout(self, name: str) -> None:
        """Each component ships models, ports, component and unit tests."""
        component = PACKAGE / "components" / name
        for module in ("__init__.py", "models.py", "component.py"):
            assert (component / module).is_file(), f"{name}/{module} missing"
        assert (component / "tests" / "test_unit.py").is_file()

    @pytest.mark.parametrize("name", COMPONENTS)
    def test_component_exports(self, name: str) -> None:
        """Component packages declare their public surface."""
        module = __import__(f"eventlens.components.{name}", fromlist=["__all__"])
        assert module.__all__
        for symbol in module.__all__:
            assert hasattr(module, symbol), f"{name} exports missing {symbol}"

    def test_config_files_valid(self) -> None:
        """Shipped registry file loads."""
        sites, goals = load_registry(PROJECT_ROOT / "registry.yaml")
        assert sites.get_site(1) is not None
        assert [g.goal_id for g in goals.list_goals(1)] == [1, 2, 3]
