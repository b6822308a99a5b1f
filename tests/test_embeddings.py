from types import SimpleNamespace

import pytest

from orderflow.services.catalog import CatalogCategory, CatalogItem, PublishedMenu
from orderflow.services.embeddings import InMemoryVectorIndex, OpenAIEmbeddingProvider


VECTORS = {
    "Tavuk Döner - Donerler": [1.0, 0.0, 0.0],
    "Kola - Icecekler": [0.0, 1.0, 0.0],
    "Ayran - Icecekler": [0.0, 0.6, 0.8],
}


class FakeEmbeddingsApi:
    def __init__(self):
        self.calls = []

    def create(self, model, input, dimensions):
        self.calls.append(input)
        texts = input if isinstance(input, list) else [input]
        return SimpleNamespace(data=[SimpleNamespace(embedding=VECTORS.get(text, [0.0, 0.0, 1.0])) for text in texts])


def _menu():
    drinks = CatalogCategory(
        id=2,
        name="Icecekler",
        items=(
            CatalogItem(id=20, name="Kola", base_price_cents=3000, category_id=2, category_name="Icecekler"),
            CatalogItem(id=21, name="Ayran", base_price_cents=2000, category_id=2, category_name="Icecekler"),
        ),
    )
    doner = CatalogCategory(
        id=1,
        name="Donerler",
        items=(CatalogItem(id=10, name="Tavuk Döner", base_price_cents=9500, category_id=1, category_name="Donerler"),),
    )
    return PublishedMenu(tenant_id=1, categories=[doner, drinks])


def test_index_ranks_by_cosine_similarity():
    index = InMemoryVectorIndex()
    index.replace(1, {10: [2.0, 0.0, 0.0], 20: [0.0, 3.0, 0.0], 21: [0.0, 0.6, 0.8]})

    results = index.search(1, [0.0, 1.0, 0.0], top_k=2)

    assert [entry.item_id for entry in results] == [20, 21]
    assert results[0].score == pytest.approx(1.0)
    assert results[1].score == pytest.approx(0.6)
    assert index.item_ids(1) == {10, 20, 21}


def test_index_ignores_mismatched_or_empty_queries():
    index = InMemoryVectorIndex()
    index.replace(1, {10: [1.0, 0.0]})

    assert index.search(1, [1.0, 0.0, 0.0], top_k=5) == []
    assert index.search(1, [0.0, 0.0], top_k=5) == []
    assert index.search(2, [1.0, 0.0], top_k=5) == []


def test_empty_menu_clears_tenant_vectors():
    index = InMemoryVectorIndex()
    index.replace(1, {10: [1.0, 0.0]})
    index.replace(1, {})

    assert index.item_ids(1) == set()
    assert index.search(1, [1.0, 0.0], top_k=5) == []


def test_provider_indexes_menu_once_and_searches():
    api = FakeEmbeddingsApi()
    provider = OpenAIEmbeddingProvider(client=SimpleNamespace(embeddings=api))
    menu = _menu()

    provider.ensure_indexed(menu)
    provider.ensure_indexed(menu)
    results = provider.search_similar(1, provider.embed("Kola - Icecekler"), top_k=1)

    assert len(api.calls) == 2
    assert results[0].item_id == 20
