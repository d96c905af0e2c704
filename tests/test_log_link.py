"""Tests for CloudWatch Logs Insights links."""

from urllib.parse import unquote

import pytest

from lambdasync.log_link import log_query_link, query_text, serialize


class TestSerialize:
    """Tests for the console URL notation."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (None, "null"),
            (True, "true"),
            (False, "false"),
            (0, "0"),
            (-1800, "-1800"),
            ("abc", "'abc"),
            ("a b", "'a*20b"),
            ("/aws/lambda", "'*2faws*2flambda"),
            (["a", 1], "(~'a~1)"),
            ({"k": "v", "n": 2}, "~(k~'v~n~2)"),
        ],
    )
    def test_values(self, value: object, expected: str) -> None:
        assert serialize(value) == expected

    def test_nested(self) -> None:
        assert serialize({"source": ["x", "y"]}) == "~(source~(~'x~'y))"

    def test_unsupported(self) -> None:
        with pytest.raises(TypeError):
            serialize(object())


class TestQueryText:
    """Tests for query_text."""

    def test_with_revision(self) -> None:
        query = query_text("abc123")

        assert '| filter meta.revision = "abc123"' in query
        assert query.endswith("| sort @timestamp desc\n| limit 10000")

    def test_without_revision(self) -> None:
        assert "meta.revision" not in query_text(None)


class TestLogQueryLink:
    """Tests for log_query_link."""

    def test_link(self) -> None:
        """Test the console host and the encoded query detail."""
        link = log_query_link("eu-west-1", "dev", "shop", ["list", "nightly"], "abc123")

        prefix = (
            "https://eu-west-1.console.aws.amazon.com/cloudwatch/home"
            "?#logsV2:logs-insights$3FqueryDetail$3D"
        )
        assert link.startswith(prefix)
        detail = unquote(link[len(prefix) :])
        assert detail.startswith("~(end~0~start~-1800~timeType~'RELATIVE~tz~'UTC~unit~'seconds")
        sources = "~'*2faws*2flambda*2fdev-shop-list~'*2faws*2flambda*2fdev-shop-nightly"
        assert f"source~({sources})" in detail
        assert detail.endswith("~lang~'CWLI)")

    def test_quotes_are_escaped(self) -> None:
        """Test that single quotes are percent-encoded in the link."""
        link = log_query_link("eu-west-1", "dev", "shop", ["list"], None)

        assert "'" not in link
        assert "%27" in link
