from orderflow.services.catalog import CatalogCategory, CatalogItem, CatalogSynonym, PublishedMenu, load_published_menu
from orderflow.services.embeddings import SimilarItem
from orderflow.services.menu_candidates import (
    CATEGORY_FLOOR,
    FOLLOWUP_SCORE,
    find_candidates,
    mentions_menu_item,
)


def _menu() -> PublishedMenu:
    doner = CatalogCategory(
        id=1,
        name="Donerler",
        items=(
            CatalogItem(id=10, name="Tavuk Döner", base_price_cents=9500, category_id=1, category_name="Donerler"),
            CatalogItem(id=11, name="Et Döner", base_price_cents=12000, category_id=1, category_name="Donerler"),
        ),
    )
    drinks = CatalogCategory(
        id=2,
        name="Icecekler",
        items=(
            CatalogItem(id=20, name="Kola", base_price_cents=3000, category_id=2, category_name="Icecekler"),
            CatalogItem(id=21, name="Ayran", base_price_cents=2000, category_id=2, category_name="Icecekler"),
        ),
    )
    pide = CatalogCategory(
        id=3,
        name="Pideler",
        items=(
            CatalogItem(
                id=30,
                name="Kiymali Pide",
                base_price_cents=11000,
                category_id=3,
                category_name="Pideler",
                description="Kiyma, sogan ve biber",
            ),
        ),
    )
    return PublishedMenu(
        tenant_id=1,
        categories=[doner, drinks, pide],
        synonyms=[CatalogSynonym(phrase="tavuk durum", item_id=10, weight=1.0)],
    )


class FakeEmbeddings:
    def __init__(self, results):
        self.results = results
        self.indexed = False

    def embed(self, text):
        return [1.0, 0.0]

    def ensure_indexed(self, menu):
        self.indexed = True

    def search_similar(self, tenant_id, vector, top_k=10):
        return self.results


class BrokenEmbeddings(FakeEmbeddings):
    def embed(self, text):
        raise RuntimeError("embedding service down")


def test_full_name_match_ranks_first_with_high_score():
    candidates = find_candidates(_menu(), "2 tavuk döner lütfen")

    assert candidates[0].item_id == 10
    assert candidates[0].score >= 0.8
    assert all(0.0 <= candidate.score <= 1.0 for candidate in candidates)


def test_slang_expansion_reaches_item_name():
    candidates = find_candidates(_menu(), "bi cola")

    assert candidates[0].item_id == 20


def test_synonym_phrase_is_recorded():
    candidates = find_candidates(_menu(), "tavuk durum olsun")
    top = candidates[0]

    assert top.item_id == 10
    assert "tavuk durum" in top.matched_synonyms


def test_category_mention_floors_every_item_of_category():
    candidates = {candidate.item_id: candidate for candidate in find_candidates(_menu(), "icecek ne var")}

    assert candidates[20].score >= CATEGORY_FLOOR
    assert candidates[21].score >= CATEGORY_FLOOR


def test_unrelated_text_yields_no_candidates():
    candidates = find_candidates(_menu(), "xyzq")

    assert candidates == []


def test_followup_items_are_always_included():
    candidates = find_candidates(_menu(), "bir tane daha", followup_item_ids=[20, 999])
    by_id = {candidate.item_id: candidate for candidate in candidates}

    assert 20 in by_id
    assert 999 not in by_id
    assert by_id[20].score >= FOLLOWUP_SCORE or by_id[20].source == "followup"


def test_vector_signal_blends_and_admits():
    provider = FakeEmbeddings([SimilarItem(item_id=10, score=0.9), SimilarItem(item_id=30, score=0.8)])

    plain = {candidate.item_id: candidate.score for candidate in find_candidates(_menu(), "tavuk")}
    blended = {
        candidate.item_id: candidate
        for candidate in find_candidates(_menu(), "tavuk", embedding_provider=provider)
    }

    assert provider.indexed is True
    assert blended[10].score > plain[10]
    assert 30 not in plain
    assert blended[30].source == "vector"
    assert blended[30].score == round(0.8 * 0.4, 4)


def test_vector_failure_degrades_to_text_scores():
    provider = BrokenEmbeddings([])

    candidates = find_candidates(_menu(), "ayran", embedding_provider=provider)

    assert candidates[0].item_id == 21


def test_mentions_menu_item():
    menu = _menu()

    assert mentions_menu_item(menu, "kolayi sil") is True
    assert mentions_menu_item(menu, "evet") is False


def test_published_menu_hides_inactive_items_and_links_options(db):
    menu = load_published_menu(db, 1)
    ids = {item.id for item in menu.items()}

    assert ids == {10, 11, 20, 21}
    groups = menu.option_groups_for(10)
    assert [group.name for group in groups] == ["Boyut"]
    assert [option.name for option in groups[0].options] == ["Normal", "Buyuk"]
    assert menu.get_item(22) is None
