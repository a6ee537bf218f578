import sys
from pathlib import Path
PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import pytest

from backend.pama.errors import TerminologyIntegrityError
from backend.pama.index import CodeSearchIndex, searchable_text, tokenize
from backend.pama.models import Coding
from backend.pama import terminology


def _c(code, display):
    return Coding(code=code, display=display, system="http://snomed.info/sct")


@pytest.fixture
def index():
    return CodeSearchIndex.build([
        _c("77477000", "Computed tomography (procedure)"),
        _c("113091000", "Magnetic resonance imaging"),
        _c("169069000", "Computed tomography of chest (procedure)"),
        _c("816077007", "Magnetic resonance imaging of brain (procedure)"),
        _c("45036003", "Ultrasonography of abdomen (procedure)"),
        _c("71250", "CT Chest"),
    ])


def test_searchable_text_strips_first_parenthetical_and_adds_abbreviations():
    assert searchable_text("Computed tomography of chest (procedure)") == "Computed tomography CT of chest"
    assert searchable_text("Magnetic resonance imaging") == "Magnetic resonance MRI imaging"
    # only the first qualifier goes
    assert searchable_text("Pain (finding) (left)") == "Pain (left)"


def test_tokenize_drops_stop_words_and_punctuation():
    assert tokenize("CT of chest, abdomen and pelvis") == ["ct", "chest", "abdomen", "pelvis"]
    assert tokenize("R51.9") == ["r51.9"]
    assert tokenize("   ") == []


def test_ct_abbreviation_matches_computed_tomography(index):
    codes = [c.code for c in index.search("CT")]
    assert "77477000" in codes
    assert "169069000" in codes


def test_mri_abbreviation_matches_magnetic_resonance(index):
    codes = [c.code for c in index.search("MRI")]
    assert codes == ["113091000", "816077007"]


def test_parenthetical_is_not_searchable():
    idx = CodeSearchIndex.build([_c("1", "Headache (finding)")])
    assert idx.search("finding") == []
    assert [c.code for c in idx.search("headache")] == ["1"]


def test_results_are_original_codings(index):
    hit = index.search("brain")[0]
    assert isinstance(hit, Coding)
    assert hit.display == "Magnetic resonance imaging of brain (procedure)"
    assert not hasattr(hit, "search")


def test_empty_and_whitespace_queries(index):
    assert index.search("") == []
    assert index.search("   \t") == []
    assert index.search("of the") == []


def test_search_is_deterministic(index):
    first = index.search("computed tomography chest")
    for _ in range(3):
        assert index.search("computed tomography chest") == first


def test_both_terms_rank_above_one(index):
    codes = [c.code for c in index.search("MRI brain")]
    assert codes[0] == "816077007"


def test_code_field_matches(index):
    assert index.search("71250")[0].code == "71250"
    # partial code typed so far
    assert index.search("8160")[0].code == "816077007"


def test_exact_ranks_above_prefix():
    idx = CodeSearchIndex.build([
        _c("1", "Computed tomography of headrest"),
        _c("2", "Computed tomography of head"),
    ])
    assert [c.code for c in idx.search("head")] == ["2", "1"]


def test_prefix_and_fuzzy_matching(index):
    assert index.search("ultrason")[0].code == "45036003"
    # misspelling with no exact or prefix hit
    assert [c.code for c in index.search("abdomin")] == ["45036003"]


def test_scores_descend_and_ties_keep_terminology_order():
    idx = CodeSearchIndex.build([
        _c("2", "Chest pain"),
        _c("1", "Chest pain"),
        _c("3", "Chest pain on breathing"),
    ])
    scored = idx.scored("chest pain")
    scores = [s for _, s in scored]
    assert scores == sorted(scores, reverse=True)
    assert [c.code for c, _ in scored] == ["2", "1", "3"]


def test_duplicate_code_with_conflicting_display_fails_build():
    with pytest.raises(TerminologyIntegrityError) as exc:
        CodeSearchIndex.build([_c("1", "Headache"), _c("1", "Migraine")])
    assert exc.value.code == "1"


def test_exact_duplicate_is_collapsed():
    idx = CodeSearchIndex.build([_c("1", "Headache"), _c("1", "Headache"), _c("2", "Neck pain")])
    assert len(idx) == 2
    assert [c.code for c in idx.search("headache")] == ["1"]
    assert idx.get("2").display == "Neck pain"
    assert idx.get("missing") is None


def test_documents_carry_search_text(index):
    doc = index.documents[0]
    assert doc.code == "77477000"
    assert doc.search == "Computed tomography CT"


def test_bundled_terminologies_build():
    procedures = CodeSearchIndex.build(terminology.load_procedure_codings())
    reasons = CodeSearchIndex.build(terminology.load_reason_codings())
    assert len(procedures) > 0 and len(reasons) > 0
    top = procedures.search("CT")[0]
    assert "Computed tomography" in top.display
    assert reasons.search("chest pain")[0].code == "29857009"


def test_build_is_logged(caplog):
    caplog.set_level("INFO", logger="backend.pama.index")
    CodeSearchIndex.build([_c("71651007", "Mammography (procedure)")])
    assert "built code index: documents=1 terms=1" in caplog.text
