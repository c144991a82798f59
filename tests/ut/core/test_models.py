"""核心数据模型测试：来源标识 / 依赖声明 / 包规格 / 依赖图 / 参数结构"""

from __future__ import annotations

import pytest

from bundlekit.core.exceptions import ValidationError
from bundlekit.core.models import (
    DependencyGraph,
    InstallOptions,
    Requirement,
    ResolveOptions,
    SourceIdentity,
    Specification,
    UpdateRequest,
)

REGISTRY = SourceIdentity.registry("file:///srv/registry")


def _spec(name: str, version: str, *deps: Requirement, **kwargs) -> Specification:
    return Specification(name=name, version=version, source=REGISTRY, dependencies=deps, **kwargs)


# =========================================================================
# SourceIdentity
# =========================================================================


class TestSourceIdentity:
    def test_key_includes_ref_and_submodules(self) -> None:
        plain = SourceIdentity.vcs("https://git.example.com/foo.git")
        branch = SourceIdentity.vcs("https://git.example.com/foo.git", branch="omg")
        subs = SourceIdentity.vcs("https://git.example.com/foo.git", branch="omg", submodules=True)
        assert plain.key == "vcs:https://git.example.com/foo.git"
        assert branch.key == "vcs:https://git.example.com/foo.git#branch=omg"
        assert subs.key == "vcs:https://git.example.com/foo.git#branch=omg+submodules"

    def test_changed_branch_is_different_identity(self) -> None:
        a = SourceIdentity.vcs("/repos/foo", branch="master")
        b = SourceIdentity.vcs("/repos/foo", branch="omg")
        assert a != b
        assert a == SourceIdentity.vcs("/repos/foo", branch="master")

    def test_same_uri_different_kind_differs(self) -> None:
        assert SourceIdentity.path("/srv/foo") != SourceIdentity.registry("/srv/foo")

    def test_trailing_slash_ignored(self) -> None:
        assert SourceIdentity.registry("file:///srv/registry/") == REGISTRY

    def test_registry_rejects_vcs_fields(self) -> None:
        with pytest.raises(ValidationError, match="不支持"):
            SourceIdentity("registry", "file:///x", branch="main")

    def test_only_one_pin(self) -> None:
        with pytest.raises(ValidationError, match="只能指定一个"):
            SourceIdentity.vcs("/repos/foo", branch="main", tag="v1")

    def test_unknown_kind(self) -> None:
        with pytest.raises(ValidationError, match="不支持的来源类型"):
            SourceIdentity("svn", "/repos/foo")

    def test_dict_round_trip(self) -> None:
        identity = SourceIdentity.vcs("/repos/foo", tag="v1.0", submodules=True)
        assert SourceIdentity.from_dict(identity.to_dict()) == identity

    def test_floating(self) -> None:
        assert SourceIdentity.vcs("/repos/foo").floating
        assert SourceIdentity.vcs("/repos/foo", branch="omg").floating
        assert not SourceIdentity.vcs("/repos/foo", tag="v1").floating
        assert not SourceIdentity.vcs("/repos/foo", ref="abc123").floating
        assert not REGISTRY.floating

    def test_ref_spec(self) -> None:
        assert SourceIdentity.vcs("/repos/foo").ref_spec == "HEAD"
        assert SourceIdentity.vcs("/repos/foo", tag="v1").ref_spec == "v1"


# =========================================================================
# Requirement / Specification
# =========================================================================


class TestRequirement:
    def test_defaults(self) -> None:
        req = Requirement("rack")
        assert req.groups == frozenset({"default"})
        assert req.platforms == frozenset()
        assert req.constraint == ""

    def test_constraint_normalized(self) -> None:
        assert Requirement("rack", "0.9.1").constraint == "==0.9.1"

    def test_name_required(self) -> None:
        with pytest.raises(ValidationError):
            Requirement("")

    def test_is_active(self) -> None:
        req = Requirement("rspec", groups=frozenset({"test"}), platforms=frozenset({"linux"}))
        assert req.is_active({"default", "test"}, "linux")
        assert not req.is_active({"default"}, "linux")
        assert not req.is_active({"test"}, "darwin")

    def test_satisfied_by(self) -> None:
        req = Requirement("rack", ">= 1.0")
        assert req.satisfied_by("1.0.0")
        assert not req.satisfied_by("0.9.1")


class TestSpecification:
    def test_equality_ignores_metadata(self) -> None:
        a = _spec("rack", "1.0.0", Requirement("rack_base"), executables=("rackup",))
        b = _spec("rack", "1.0.0")
        assert a == b
        assert hash(a) == hash(b)

    def test_equality_respects_source_and_platform(self) -> None:
        other = Specification("rack", "1.0.0", SourceIdentity.path("/srv/rack"))
        assert _spec("rack", "1.0.0") != other
        assert _spec("rack", "1.0.0") != _spec("rack", "1.0.0", platform="linux")

    def test_full_name(self) -> None:
        assert _spec("rack", "1.0.0").full_name == "rack-1.0.0"
        assert _spec("nokogiri", "1.4", platform="linux").full_name == "nokogiri-1.4-linux"

    def test_supports(self) -> None:
        assert _spec("rack", "1.0").supports("linux")
        assert _spec("rack", "1.0", platform="linux").supports("linux")
        assert not _spec("rack", "1.0", platform="darwin").supports("linux")


# =========================================================================
# DependencyGraph
# =========================================================================


class TestDependencyGraph:
    def _graph(self) -> DependencyGraph:
        graph = DependencyGraph(
            requirements=[
                Requirement("rails"),
                Requirement("rspec", groups=frozenset({"test"})),
            ],
            platform="linux",
        )
        graph.add(_spec("rails", "3.0", Requirement("activesupport")))
        graph.add(_spec("activesupport", "3.0", Requirement("i18n")))
        graph.add(_spec("i18n", "0.4"))
        graph.add(_spec("rspec", "2.0", Requirement("diff-lcs")))
        graph.add(_spec("diff-lcs", "1.1"))
        return graph

    def test_iteration_sorted(self) -> None:
        names = [s.name for s in self._graph()]
        assert names == sorted(names)

    def test_for_groups(self) -> None:
        graph = self._graph()
        default = {s.name for s in graph.for_groups({"default"})}
        assert default == {"rails", "activesupport", "i18n"}
        everything = {s.name for s in graph.for_groups({"default", "test"})}
        assert everything == graph.names()

    def test_dependents_of(self) -> None:
        assert self._graph().dependents_of({"i18n"}) == {"activesupport", "rails"}
        assert self._graph().dependents_of({"rails"}) == set()

    def test_dependencies_of(self) -> None:
        assert self._graph().dependencies_of({"rails"}) == {"activesupport", "i18n"}
        assert self._graph().dependencies_of({"i18n"}) == set()

    def test_cycles_terminate(self) -> None:
        graph = DependencyGraph(requirements=[Requirement("a")])
        graph.add(_spec("a", "1", Requirement("b")))
        graph.add(_spec("b", "1", Requirement("a")))
        assert {s.name for s in graph.for_groups({"default"})} == {"a", "b"}
        assert graph.dependents_of({"a"}) == {"b"}
        assert graph.dependencies_of({"a"}) == {"b"}


# =========================================================================
# 参数结构
# =========================================================================


class TestOptions:
    def test_resolve_options_require_groups(self) -> None:
        with pytest.raises(ValidationError):
            ResolveOptions(groups=frozenset(), platform="linux")

    def test_resolve_options_unlocked(self) -> None:
        opts = ResolveOptions(groups={"default"}, platform="linux", update_scope={"rack"})
        assert opts.unlocked("rack")
        assert not opts.unlocked("rails")
        assert ResolveOptions(groups={"default"}, platform="linux", update_all=True).unlocked("x")

    def test_install_options_cannot_exclude_default(self) -> None:
        with pytest.raises(ValidationError, match="default"):
            InstallOptions(without={"default"})

    def test_update_request_everything(self) -> None:
        assert UpdateRequest().everything
        assert not UpdateRequest(names={"rack"}).everything
        assert not UpdateRequest(source_names={"foo"}).everything
