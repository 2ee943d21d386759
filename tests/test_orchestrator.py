"""Tests for BuildOrchestrator scheduling, memoization and failure propagation."""

import threading

import pytest

from dato_schema_sync.build import (
    BuildOrchestrator,
    BuildStatus,
    CacheEntry,
    DefinitionModule,
    DependencyGraph,
    ModuleKey,
    Reconciler,
    ReconciliationCache,
    RemoteState,
    RunReport,
)
from dato_schema_sync.build.reconciler import fingerprint_remote_id
from dato_schema_sync.definitions import ItemTypeDefinition
from dato_schema_sync.exceptions import (
    CycleError,
    DefinitionError,
    DependencyFailedError,
    ItemNotFoundError,
)

from conftest import FakeDatoClient


class Counter:
    def __init__(self):
        self._lock = threading.Lock()
        self.calls = {}

    def hit(self, name):
        with self._lock:
            self.calls[name] = self.calls.get(name, 0) + 1


def _module(text, entry, index=0):
    return DefinitionModule(key=ModuleKey.parse(text), path=f"/defs/{text}.py",
                            index=index, entry_point=entry)


def _orchestrator(tmp_path, modules, edges=(), concurrency=2):
    client = FakeDatoClient()
    cache = ReconciliationCache(str(tmp_path / "cache.json")).load()
    reconciler = Reconciler(client, cache, RemoteState())
    deps = {m.key: set() for m in modules}
    for source, target in edges:
        deps[ModuleKey.parse(source)].add(ModuleKey.parse(target))
    graph = DependencyGraph.build([m.key for m in modules], deps)
    orchestrator = BuildOrchestrator(modules, graph, reconciler, cache, concurrency=concurrency)
    return orchestrator, client, graph


def author_entry(counter=None):
    def build(ctx):
        if counter:
            counter.hit('Author')
        return ItemTypeDefinition.model("Author").add_string("Name")
    return build


def article_entry(counter=None):
    def build(ctx):
        if counter:
            counter.hit('Article')
        return (ItemTypeDefinition.model("Article")
                .add_link("Author", item_types=[ctx.resolve_model("Author")]))
    return build


class TestScheduling:
    def test_results_follow_plan_order(self, tmp_path):
        modules = [_module('model:Author', author_entry(), 0),
                   _module('model:Article', article_entry(), 1)]
        orchestrator, client, graph = _orchestrator(
            tmp_path, modules, [('model:Article', 'model:Author')])

        results = orchestrator.run(graph.topo_sort())

        assert [r.key for r in results] == ['model:Author', 'model:Article']
        assert all(r.status is BuildStatus.CREATED for r in results)
        author_id = results[0].remote_id
        article_id = results[1].remote_id
        link = client.field(article_id, 'author')
        assert link['validators']['item_item_type']['item_types'] == [author_id]

    def test_concurrency_is_bounded(self, tmp_path):
        active = []
        peak = []
        lock = threading.Lock()
        release = threading.Event()

        def slow(name):
            def build(ctx):
                with lock:
                    active.append(name)
                    peak.append(len(active))
                release.wait(0.05)
                with lock:
                    active.remove(name)
                return ItemTypeDefinition.block(name)
            return build

        modules = [_module(f'block:B{i}', slow(f'B{i}'), i) for i in range(6)]
        orchestrator, _, graph = _orchestrator(tmp_path, modules, concurrency=2)

        results = orchestrator.run(graph.topo_sort())

        assert len(results) == 6
        assert max(peak) <= 2

    def test_cancel_before_run_builds_nothing(self, tmp_path):
        modules = [_module('model:Author', author_entry(), 0)]
        orchestrator, client, graph = _orchestrator(tmp_path, modules)

        orchestrator.cancel()

        assert orchestrator.cancelled
        results = orchestrator.run(graph.topo_sort())
        assert [(r.key, r.status) for r in results] == [('model:Author', BuildStatus.CANCELLED)]
        assert client.calls == []

    def test_cancel_mid_run_reports_unscheduled_modules(self, tmp_path):
        holder = {}

        def cancelling_author(ctx):
            holder['orchestrator'].cancel()
            return ItemTypeDefinition.model("Author").add_string("Name")

        modules = [_module('model:Author', cancelling_author, 0),
                   _module('model:Zed', lambda ctx: ItemTypeDefinition.model("Zed"), 1)]
        orchestrator, client, graph = _orchestrator(tmp_path, modules, concurrency=1)
        holder['orchestrator'] = orchestrator

        results = orchestrator.run(graph.topo_sort())

        assert [(r.key, r.status) for r in results] == [
            ('model:Author', BuildStatus.CREATED), ('model:Zed', BuildStatus.CANCELLED)]
        assert [c[0] for c in client.calls].count('create_item_type') == 1
        report = RunReport(results=results)
        assert not report.success
        assert report.exit_code == 1


class TestMemoization:
    def test_shared_dependency_built_once(self, tmp_path):
        counter = Counter()

        def quote(ctx):
            counter.hit('Quote')
            return ItemTypeDefinition.block("Quote").add_text("Body")

        def page(name):
            def build(ctx):
                return (ItemTypeDefinition.model(name)
                        .add_modular_content("Content", blocks=[ctx.resolve_block("Quote")]))
            return build

        modules = [_module('block:Quote', quote, 0),
                   _module('model:Page', page("Page"), 1),
                   _module('model:Post', page("Post"), 2)]
        orchestrator, client, graph = _orchestrator(
            tmp_path, modules, [('model:Page', 'block:Quote'), ('model:Post', 'block:Quote')])

        results = orchestrator.run(graph.topo_sort())

        assert counter.calls == {'Quote': 1}
        assert [c for c in client.calls if c[0] == 'create_item_type'].count(
            ('create_item_type', 'quote_block')) == 1
        quote_id = results[0].remote_id
        for result in results[1:]:
            content = client.field(result.remote_id, 'content')
            assert content['validators']['rich_text_blocks']['item_types'] == [quote_id]

    @pytest.mark.parametrize("concurrency", [1, 2])
    def test_unscheduled_dependency_built_inline(self, tmp_path, concurrency):
        counter = Counter()
        # No edges: the lookup is only discovered while Article runs
        modules = [_module('model:Article', article_entry(counter), 0),
                   _module('model:Author', author_entry(counter), 1)]
        orchestrator, client, _ = _orchestrator(tmp_path, modules, concurrency=concurrency)

        results = orchestrator.run([m.key for m in modules])

        assert counter.calls == {'Article': 1, 'Author': 1}
        assert [r.status for r in results] == [BuildStatus.CREATED, BuildStatus.CREATED]
        author_id = orchestrator.ensure_built(ModuleKey('model', 'Author')).remote_id
        link = client.field(results[0].remote_id, 'author')
        assert link['validators']['item_item_type']['item_types'] == [author_id]


class TestFailures:
    def test_dependents_of_failed_module_are_blocked(self, tmp_path):
        counter = Counter()

        def broken_author(ctx):
            raise RuntimeError("bad definition")

        modules = [_module('model:Author', broken_author, 0),
                   _module('model:Article', article_entry(counter), 1)]
        orchestrator, client, graph = _orchestrator(
            tmp_path, modules, [('model:Article', 'model:Author')])

        results = orchestrator.run(graph.topo_sort())

        assert [r.status for r in results] == [BuildStatus.FAILED, BuildStatus.BLOCKED]
        assert isinstance(results[1].error, DependencyFailedError)
        assert counter.calls == {}
        assert client.mutations == []

    def test_blocking_is_transitive(self, tmp_path):
        def broken(ctx):
            raise RuntimeError("boom")

        def top(ctx):
            return ItemTypeDefinition.model("Top").add_link(
                "Mid", item_types=[ctx.resolve_model("Mid")])

        def mid(ctx):
            return ItemTypeDefinition.model("Mid").add_link(
                "Base", item_types=[ctx.resolve_model("Base")])

        modules = [_module('model:Base', broken, 0), _module('model:Mid', mid, 1),
                   _module('model:Top', top, 2)]
        orchestrator, _, graph = _orchestrator(
            tmp_path, modules, [('model:Mid', 'model:Base'), ('model:Top', 'model:Mid')])

        statuses = [r.status for r in orchestrator.run(graph.topo_sort())]

        assert statuses == [BuildStatus.FAILED, BuildStatus.BLOCKED, BuildStatus.BLOCKED]

    def test_unrelated_modules_still_build(self, tmp_path):
        def broken(ctx):
            raise RuntimeError("boom")

        modules = [_module('block:Broken', broken, 0),
                   _module('model:Author', author_entry(), 1)]
        orchestrator, _, graph = _orchestrator(tmp_path, modules)

        results = orchestrator.run(graph.topo_sort())

        assert [r.status for r in results] == [BuildStatus.FAILED, BuildStatus.CREATED]

    def test_lookup_of_unknown_name_suggests_alternatives(self, tmp_path):
        def article(ctx):
            return ItemTypeDefinition.model("Article").add_link(
                "Author", item_types=[ctx.resolve_model("Autor")])

        modules = [_module('model:Author', author_entry(), 0),
                   _module('model:Article', article, 1)]
        orchestrator, _, graph = _orchestrator(tmp_path, modules)

        results = orchestrator.run(graph.topo_sort())

        error = results[1].error
        assert results[1].status is BuildStatus.FAILED
        assert isinstance(error, ItemNotFoundError)
        assert 'Cannot find model with name "Autor"' in str(error)
        assert 'Author' in str(error)
        assert error.available == ['Article', 'Author']

    def test_lookup_of_unknown_name_falls_back_to_cache(self, tmp_path):
        def article(ctx):
            return ItemTypeDefinition.model("Article").add_link(
                "Author", item_types=[ctx.resolve_model("Author")])

        modules = [_module('model:Article', article, 0)]
        orchestrator, client, graph = _orchestrator(tmp_path, modules)
        orchestrator.cache.set('model:Author', CacheEntry('h', 'it-legacy'))

        (result,) = orchestrator.run(graph.topo_sort())

        link = client.field(result.remote_id, 'author')
        assert link['validators']['item_item_type']['item_types'] == ['it-legacy']

    def test_mutual_lookup_at_runtime_is_a_cycle(self, tmp_path):
        def a(ctx):
            return ItemTypeDefinition.model("A").add_link("B", item_types=[ctx.resolve_model("B")])

        def b(ctx):
            return ItemTypeDefinition.model("B").add_link("A", item_types=[ctx.resolve_model("A")])

        modules = [_module('model:A', a, 0), _module('model:B', b, 1)]
        orchestrator, client, _ = _orchestrator(tmp_path, modules, concurrency=1)

        results = orchestrator.run([m.key for m in modules])

        assert [r.status for r in results] == [BuildStatus.BLOCKED, BuildStatus.FAILED]
        assert isinstance(results[1].error, CycleError)
        assert client.mutations == []


class TestModuleResults:
    def test_returned_id_is_cached_as_updated(self, tmp_path):
        modules = [_module('model:Legacy', lambda ctx: 'it-42', 0)]
        orchestrator, client, graph = _orchestrator(tmp_path, modules)

        (result,) = orchestrator.run(graph.topo_sort())

        assert result.status is BuildStatus.UPDATED
        assert result.remote_id == 'it-42'
        entry = orchestrator.cache.get('model:Legacy')
        assert entry.id == 'it-42'
        assert entry.hash == fingerprint_remote_id('it-42')
        assert client.mutations == []

        again, _, graph = _orchestrator(tmp_path, modules)
        (second,) = again.run(graph.topo_sort())

        assert second.status is BuildStatus.UNCHANGED
        assert second.remote_id == 'it-42'
        assert again.cache.get('model:Legacy') == entry

    def test_different_returned_id_is_updated(self, tmp_path):
        first, _, graph = _orchestrator(tmp_path, [_module('model:Legacy', lambda ctx: 'it-42', 0)])
        first.run(graph.topo_sort())

        again, _, graph = _orchestrator(tmp_path, [_module('model:Legacy', lambda ctx: 'it-43', 0)])
        (result,) = again.run(graph.topo_sort())

        assert result.status is BuildStatus.UPDATED
        assert again.cache.get('model:Legacy').id == 'it-43'

    def test_wrong_return_type_fails(self, tmp_path):
        modules = [_module('model:Odd', lambda ctx: {'name': 'Odd'}, 0)]
        orchestrator, _, graph = _orchestrator(tmp_path, modules)

        (result,) = orchestrator.run(graph.topo_sort())

        assert result.status is BuildStatus.FAILED
        assert isinstance(result.error, DefinitionError)

    def test_kind_mismatch_fails(self, tmp_path):
        modules = [_module('block:Author', author_entry(), 0)]
        orchestrator, _, graph = _orchestrator(tmp_path, modules)

        (result,) = orchestrator.run(graph.topo_sort())

        assert result.status is BuildStatus.FAILED
        assert "defines a model" in str(result.error)
