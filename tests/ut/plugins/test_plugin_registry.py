"""插件注册表与加载器测试"""

from __future__ import annotations

from pathlib import Path

import pytest

from gottabe.core.descriptor import descriptor_from_dict
from gottabe.core.exceptions import ConfigError, ValidationError
from gottabe.core.models import Phase, PluginConfig
from gottabe.plugins.loader import instantiate, load_descriptor_plugins, load_plugins
from gottabe.plugins.registry import PluginRegistry


class Recorder:
    def __init__(self, label: str = "rec") -> None:
        self.name = label

    def process(self, params, context) -> None:
        pass


class Strict:
    config_schema = {
        "type": "object",
        "properties": {"level": {"type": "integer", "minimum": 0}},
        "required": ["level"],
    }

    def process(self, params, context) -> None:
        pass


class TestPluginRegistry:
    def test_bindings_per_phase_in_order(self) -> None:
        reg = PluginRegistry()
        a, b, c = Recorder("a"), Recorder("b"), Recorder("c")
        reg.register(a, [Phase.COMPILE])
        reg.register(b, [Phase.COMPILE, Phase.LINK])
        reg.register(c, [Phase.LINK])

        assert [x.plugin for x in reg.bindings_for(Phase.COMPILE)] == [a, b]
        assert [x.plugin for x in reg.bindings_for(Phase.LINK)] == [b, c]
        assert reg.bindings_for(Phase.TEST) == []

    def test_empty_phases_bind_all(self) -> None:
        reg = PluginRegistry()
        reg.register(Recorder(), [])
        for phase in Phase:
            assert len(reg.bindings_for(phase)) == 1

    def test_all_phase_plugin_keeps_registration_position(self) -> None:
        reg = PluginRegistry()
        a, b, c = Recorder("a"), Recorder("b"), Recorder("c")
        reg.register(a, [Phase.COMPILE])
        reg.register(b)
        reg.register(c, [Phase.COMPILE])
        assert [x.plugin for x in reg.bindings_for(Phase.COMPILE)] == [a, b, c]
        assert [x.plugin for x in reg.bindings_for(Phase.CLEAN)] == [b]

    def test_unregister(self) -> None:
        reg = PluginRegistry()
        handle = reg.register(Recorder())
        other = reg.register(Recorder("keep"))
        assert reg.unregister(handle)
        assert not reg.unregister(handle)
        assert [b.handle for b in reg.bindings()] == [other]

    def test_rejects_object_without_process(self) -> None:
        with pytest.raises(ValidationError, match="process"):
            PluginRegistry().register(object())

    def test_schema_validation_passes(self) -> None:
        reg = PluginRegistry()
        reg.register(Strict(), [Phase.COMPILE], {"level": 2})
        assert reg.bindings()[0].config == {"level": 2}

    def test_schema_validation_fails_with_details(self) -> None:
        with pytest.raises(ValidationError) as exc:
            PluginRegistry().register(Strict(), config={"level": -1})
        assert any(d.startswith("level:") for d in exc.value.details)

    def test_missing_required_field(self) -> None:
        with pytest.raises(ValidationError) as exc:
            PluginRegistry().register(Strict(), config={})
        assert exc.value.details[0].startswith("<root>:")

    def test_invalid_schema(self) -> None:
        with pytest.raises(ValidationError, match="schema 无效"):
            PluginRegistry().register(Recorder(), schema={"type": "no-such-type"})


PLUGIN_MODULE = '''
class Echo:
    name = "echo"

    def process(self, params, context):
        return None


def make():
    return Echo()


INSTANCE = Echo()
'''


@pytest.fixture()
def plugin_module(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> str:
    (tmp_path / "gb_sample_plugin.py").write_text(PLUGIN_MODULE, encoding="utf-8")
    monkeypatch.syspath_prepend(str(tmp_path))
    return "gb_sample_plugin"


class TestPluginLoader:
    @pytest.mark.parametrize("attr", ["Echo", "make", "INSTANCE"])
    def test_instantiate_by_main(self, plugin_module: str, attr: str) -> None:
        plugin = instantiate(PluginConfig(package="g/echo", main=f"{plugin_module}:{attr}"))
        assert type(plugin).__name__ == "Echo"

    def test_bad_main(self) -> None:
        with pytest.raises(ConfigError, match="module:Class"):
            instantiate(PluginConfig(package="g/echo", main="no_colon"))

    def test_missing_module(self) -> None:
        with pytest.raises(ConfigError, match="加载插件失败"):
            instantiate(PluginConfig(package="g/echo", main="gb_missing_mod:X"))

    def test_unknown_entry_point(self) -> None:
        with pytest.raises(ConfigError, match="entry point"):
            instantiate(PluginConfig(package="g/definitely-not-installed@1"))

    def test_load_plugins_registers_phases(self, plugin_module: str) -> None:
        reg = PluginRegistry()
        load_plugins([
            PluginConfig(package="g/echo", phases=[Phase.TEST], main=f"{plugin_module}:Echo"),
        ], reg)
        assert len(reg.bindings_for(Phase.TEST)) == 1
        assert reg.bindings_for(Phase.COMPILE) == []
        assert reg.bindings()[0].name == "g/echo"

    def test_descriptor_then_target_plugins(self, plugin_module: str) -> None:
        desc = descriptor_from_dict({
            "groupId": "g", "artifactId": "app", "version": "1",
            "plugins": [{"package": "g/top", "main": f"{plugin_module}:Echo"}],
            "targets": [{
                "name": "linux", "arch": "x86", "platform": "linux", "toolchain": "gcc",
                "plugins": [{"package": "g/tgt", "main": f"{plugin_module}:make"}],
            }],
        })
        reg = PluginRegistry()
        load_descriptor_plugins(desc, desc.targets[0], reg)
        assert [b.name for b in reg.bindings()] == ["g/top", "g/tgt"]
