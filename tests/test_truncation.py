from designgen.truncation import is_truncated


def test_complete_object_is_not_truncated():
    assert is_truncated('{"a": "b"}') is False


def test_unterminated_string_at_end_is_truncated():
    assert is_truncated('{"metadata": {"theme_name": "Aur') is True


def test_scan_stops_at_last_closer():
    # Only the tail after the final '}' is inspected.
    assert is_truncated('{"a": "b"}, "c": "d') is True
    assert is_truncated('{"a": "b"}, "c": "d"') is False


def test_escaped_quote_does_not_count():
    assert is_truncated('{"a": "say \\"hi') is True
    assert is_truncated('{"a": "path\\\\"') is False


def test_empty_text():
    assert is_truncated("") is False


def test_missing_closers_without_open_string_is_not_flagged():
    # Heuristic only looks at quotes; unbalanced braces alone are not enough.
    assert is_truncated('{"a": {"b": 1') is False
