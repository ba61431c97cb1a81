from genstream.core.merge_gate import CollectingReviewBoundary, merge_files, propose

BASE = {"src/App.tsx": "app v1", "src/index.css": "body {}"}


def test_disjoint_batches_commute():
    b1 = {"src/a.tsx": "a"}
    b2 = {"src/b.tsx": "b", "src/index.css": "body { margin: 0 }"}
    assert merge_files(merge_files(BASE, b1), b2) == merge_files(merge_files(BASE, b2), b1)


def test_later_accepted_batch_wins():
    b1 = {"src/App.tsx": "app v2"}
    b2 = {"src/App.tsx": "app v3"}
    assert merge_files(merge_files(BASE, b1), b2)["src/App.tsx"] == "app v3"
    assert merge_files(merge_files(BASE, b2), b1)["src/App.tsx"] == "app v2"


def test_merge_is_idempotent():
    batch = {"src/App.tsx": "app v2", "src/new.tsx": "new"}
    once = merge_files(BASE, batch, ["src/index.css"])
    assert merge_files(once, batch, ["src/index.css"]) == once


def test_inputs_not_mutated():
    base = dict(BASE)
    merge_files(base, {"src/App.tsx": "changed"}, ["src/index.css"])
    assert base == BASE


def test_propose_hands_merged_set_to_boundary(review):
    proposal = propose(review, "Updated App", BASE, {"src/a.tsx": "a"}, ["src/index.css"])
    assert review.proposals == [("Updated App", {"src/App.tsx": "app v1", "src/a.tsx": "a"})]
    assert proposal.files == {"src/App.tsx": "app v1", "src/a.tsx": "a"}


def test_collecting_boundary_keeps_last():
    boundary = CollectingReviewBoundary()
    assert boundary.last is None
    propose(boundary, "Generated App", {}, {"a.tsx": "1"})
    propose(boundary, "Generated App (Partial)", {}, {"b.tsx": "2"})
    assert boundary.last.label == "Generated App (Partial)"
    assert len(boundary.proposals) == 2
