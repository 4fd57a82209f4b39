"""Unit tests for the content index."""

from datetime import UTC, datetime, timedelta

from provenance.engine.content_index import ContentIndex, Origin, fingerprint, normalize_whitespace

T0 = datetime(2024, 1, 1, tzinfo=UTC)


def make_origin(
    sha: str,
    hours: int = 0,
    pr_id: str | None = "pr-1",
    pr_number: int | None = 1,
) -> Origin:
    """Build an origin committed `hours` after T0."""
    return Origin(
        commit_sha=sha,
        committed_at=T0 + timedelta(hours=hours),
        pr_id=pr_id,
        pr_number=pr_number,
        pr_url=f"https://github.com/acme/widgets/pull/{pr_number}",
        author_login="alice",
    )


class TestNormalization:
    """Tests for whitespace normalization and fingerprints."""

    def test_whitespace_runs_collapse(self) -> None:
        """Test that indentation and inner whitespace runs do not matter."""
        assert normalize_whitespace("    return  x +\t1;  ") == "return x + 1;"

    def test_fingerprint_ignores_whitespace(self) -> None:
        """Test fingerprints of whitespace variants are equal."""
        assert fingerprint("a = 1") == fingerprint("  a  =  1 ")

    def test_context_changes_fingerprint(self) -> None:
        """Test that neighbours are part of the contextual fingerprint."""
        bare = fingerprint("x")
        contextual = fingerprint("x", ["before"], ["after"])

        assert bare != contextual
        assert contextual != fingerprint("x", ["other"], ["after"])


class TestContentIndex:
    """Tests for ContentIndex."""

    def test_lookup_unknown_line_is_baseline(self) -> None:
        """Test that content never introduced has no origin."""
        index = ContentIndex("acme/widgets")

        assert index.lookup("int a = 0;") is None

    def test_add_and_lookup(self) -> None:
        """Test resolving a recorded line."""
        index = ContentIndex("acme/widgets")
        origin = make_origin("1" * 40)

        assert index.add("return x + 1;", origin) is True
        assert index.lookup("  return x + 1;") == origin

    def test_add_is_idempotent(self) -> None:
        """Test that re-adding the same line from the same commit is a no-op."""
        index = ContentIndex("acme/widgets")
        origin = make_origin("1" * 40)

        index.add("x", origin, ["a"], ["b"])
        size = len(index)

        assert index.add("x", origin, ["a"], ["b"]) is False
        assert len(index) == size
        assert index.origins("x", ["a"], ["b"]) == (origin,)

    def test_blank_lines_are_not_indexed(self) -> None:
        """Test that whitespace-only lines are skipped."""
        index = ContentIndex("acme/widgets")

        assert index.add("   ", make_origin("1" * 40)) is False
        assert len(index) == 0

    def test_contextual_match_preferred(self) -> None:
        """Test that the origin recorded in the same surroundings wins."""
        index = ContentIndex("acme/widgets")
        old = make_origin("1" * 40, hours=0, pr_id="pr-1", pr_number=1)
        new = make_origin("2" * 40, hours=5, pr_id="pr-2", pr_number=2)
        index.add("}", old, ["if (a) {"], ["else {"])
        index.add("}", new, ["while (b) {"], ["return;"])

        assert index.lookup("}", ["if (a) {"], ["else {"]) == old

    def test_bare_fallback_when_context_changed(self) -> None:
        """Test the bare fingerprint is used when neighbours differ."""
        index = ContentIndex("acme/widgets")
        origin = make_origin("1" * 40)
        index.add("do_work()", origin, ["start()"], ["stop()"])

        assert index.lookup("do_work()", ["something else"], []) == origin

    def test_most_recent_commit_wins(self) -> None:
        """Test recency ordering among candidates."""
        index = ContentIndex("acme/widgets")
        older = make_origin("1" * 40, hours=1, pr_id="pr-1", pr_number=1)
        newer = make_origin("2" * 40, hours=2, pr_id="pr-2", pr_number=2)
        index.add("x = 1", older)
        index.add("x = 1", newer)

        assert index.lookup("x = 1") == newer

    def test_equal_recency_resolves_to_lowest_pr_number(self) -> None:
        """Test the PR-number tie-break."""
        index = ContentIndex("acme/widgets")
        first = make_origin("9" * 40, hours=1, pr_id="pr-3", pr_number=3)
        second = make_origin("1" * 40, hours=1, pr_id="pr-8", pr_number=8)
        index.add("x = 1", second)
        index.add("x = 1", first)

        assert index.lookup("x = 1") == first

    def test_reachable_candidates_preferred(self) -> None:
        """Test that commits in HEAD's ancestry beat more recent unreachable ones."""
        index = ContentIndex("acme/widgets")
        merged = make_origin("1" * 40, hours=1, pr_id="pr-1", pr_number=1)
        unmerged = make_origin("2" * 40, hours=9, pr_id="pr-2", pr_number=2)
        index.add("x = 1", merged)
        index.add("x = 1", unmerged)

        result = index.lookup("x = 1", is_reachable=lambda sha: sha == "1" * 40)

        assert result == merged

    def test_exclude_pr(self) -> None:
        """Test that origins of the excluded PR are ignored."""
        index = ContentIndex("acme/widgets")
        index.add("x = 1", make_origin("1" * 40, pr_id="pr-1"))

        assert index.lookup("x = 1", exclude_pr_id="pr-1") is None

    def test_context_of_sequence(self) -> None:
        """Test neighbours of a line in a full file."""
        index = ContentIndex("acme/widgets", context_window=1)
        lines = ["a", "b", "c"]

        assert index.context(lines, 1) == ([], ["b"])
        assert index.context(lines, 2) == (["a"], ["c"])
        assert index.context(lines, 3) == (["b"], [])

    def test_context_of_partial_mapping(self) -> None:
        """Test that unknown neighbours of a partial file are left out."""
        index = ContentIndex("acme/widgets", context_window=2)

        assert index.context({10: "x", 11: "y", 13: "z"}, 11) == (["x"], ["z"])
