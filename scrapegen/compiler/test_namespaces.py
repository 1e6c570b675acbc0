"""
Property tests for namespace resolution.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from scrapegen.compiler.models import NamespaceSelector
from scrapegen.compiler.namespaces import resolve_namespaces


namespace_names = st.from_regex(r"[a-z][a-z0-9-]{0,20}", fullmatch=True)


@pytest.mark.property
class TestResolveNamespaces:

    @given(own=namespace_names, names=st.lists(namespace_names, max_size=5))
    @settings(max_examples=100)
    def test_any_wins_over_match_names(self, own: str, names: list[str]):
        assert resolve_namespaces(NamespaceSelector(any=True, match_names=names), own) == []

    @given(own=namespace_names)
    @settings(max_examples=100)
    def test_defaults_to_own_namespace(self, own: str):
        assert resolve_namespaces(NamespaceSelector(), own) == [own]

    @given(own=namespace_names, names=st.lists(namespace_names, min_size=1, max_size=5))
    @settings(max_examples=100)
    def test_match_names_in_order(self, own: str, names: list[str]):
        result = resolve_namespaces(NamespaceSelector(match_names=names), own)
        assert result == names

    def test_result_does_not_alias_selector(self):
        selector = NamespaceSelector(match_names=["a"])
        resolve_namespaces(selector, "own").append("b")
        assert selector.match_names == ["a"]
