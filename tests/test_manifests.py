"""
Tests for crdindex.manifests (multi-document YAML splitting).
"""

import pytest
import yaml
from unittest.mock import patch

from crdindex.manifests import dump_document, iter_documents, load_document, split_yaml


MULTI_DOC = b"""\
# leading comment
apiVersion: v1
kind: ConfigMap
metadata:
  name: first
data:
  key: value
---
apiVersion: apps/v1
kind: Deployment
metadata:
  name: second
---
# only a comment
---
apiVersion: v1
kind: Secret
metadata:
  name: third
"""


class TestSplitYaml:
    """Tests for split_yaml."""

    def test_reparsed_slices_equal_source_documents(self):
        """Each slice decodes to the same object as the source document."""
        slices = split_yaml(MULTI_DOC, "bundle.yaml")
        expected = [d for d in yaml.safe_load_all(MULTI_DOC) if d is not None]

        assert len(slices) == 3
        assert [yaml.safe_load(s) for s in slices] == expected

    def test_slices_are_canonical(self):
        """Slices are re-dumped with sorted keys regardless of source order."""
        data = b"kind: ConfigMap\napiVersion: v1\nmetadata: {name: x}\n"
        (slice_,) = split_yaml(data)
        assert slice_ == dump_document(yaml.safe_load(data))
        assert slice_.index(b"apiVersion") < slice_.index(b"kind")

    def test_invalid_document_is_skipped(self):
        """A broken document does not hide its siblings."""
        data = (
            b"kind: A\nname: one\n"
            b"---\n"
            b"kind: B\nname: two\n"
            b"---\n"
            b"kind: [unclosed\n"
        )
        slices = split_yaml(data, "broken.yaml")
        assert [yaml.safe_load(s)['kind'] for s in slices] == ['A', 'B']

    def test_invalid_document_in_the_middle(self):
        data = b"kind: A\n---\nkey: \"unterminated\n---\nkind: C\n"
        kinds = [yaml.safe_load(s)['kind'] for s in split_yaml(data)]
        assert kinds == ['A', 'C']

    def test_non_mapping_documents_are_skipped(self):
        data = b"- a\n- b\n---\njust a string\n---\nkind: Keep\n"
        slices = split_yaml(data)
        assert [yaml.safe_load(s) for s in slices] == [{'kind': 'Keep'}]

    def test_empty_input(self):
        assert split_yaml(b"") == []
        assert split_yaml(b"---\n---\n") == []

    def test_document_end_marker(self):
        data = b"kind: A\n...\n---\nkind: B\n...\n"
        kinds = [yaml.safe_load(s)['kind'] for s in split_yaml(data)]
        assert kinds == ['A', 'B']

    def test_content_on_marker_line(self):
        data = b"--- {kind: A}\n--- {kind: B}\n"
        kinds = [yaml.safe_load(s)['kind'] for s in split_yaml(data)]
        assert kinds == ['A', 'B']

    def test_indented_dashes_do_not_split(self):
        """Only column-0 markers separate documents."""
        data = b"kind: A\ndescription: |\n  ---\n  not a marker\n"
        slices = split_yaml(data)
        assert len(slices) == 1
        assert '---' in yaml.safe_load(slices[0])['description']

    def test_directive_before_marker(self):
        data = b"%YAML 1.1\n---\nkind: A\n"
        assert [yaml.safe_load(s) for s in split_yaml(data)] == [{'kind': 'A'}]

    def test_byte_order_mark(self):
        data = b"\xef\xbb\xbfkind: A\n"
        assert [yaml.safe_load(s) for s in split_yaml(data)] == [{'kind': 'A'}]

    def test_decoder_failure_yields_empty_result(self):
        """A decoder failure outside the per-document errors empties the file."""
        with patch('crdindex.manifests.load_document', side_effect=RuntimeError("boom")):
            assert split_yaml(b"kind: A\n---\nkind: B\n", "x.yaml") == []

    def test_iter_documents_propagates_decoder_failure(self):
        with patch('crdindex.manifests.load_document', side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                list(iter_documents(b"kind: A\n"))

    def test_invalid_timestamp_skips_only_that_document(self):
        data = (
            b"kind: CustomResourceDefinition\nmetadata:\n  name: foos.example.com\n"
            b"---\n"
            b"kind: ConfigMap\ndata:\n  released: 2020-02-30\n"
            b"---\n"
            b"kind: Secret\n"
        )
        kinds = [yaml.safe_load(s)['kind'] for s in split_yaml(data, "crds.yaml")]
        assert kinds == ['CustomResourceDefinition', 'Secret']

    def test_encode_failure_skips_only_that_document(self):
        real_dump = dump_document

        def dump(document):
            if document['kind'] == 'B':
                raise TypeError("unorderable keys")
            return real_dump(document)

        with patch('crdindex.manifests.dump_document', side_effect=dump):
            slices = split_yaml(b"kind: A\n---\nkind: B\n---\nkind: C\n")
        assert [yaml.safe_load(s)['kind'] for s in slices] == ['A', 'C']

    def test_yaml_11_booleans_stay_strings(self):
        data = b"properties:\n  on: {type: string}\n  off: {type: string}\n  name: {type: string}\nflag: yes\n"
        (slice_,) = split_yaml(data)
        document = yaml.safe_load(slice_)
        assert sorted(document['properties']) == ['name', 'off', 'on']
        assert document['flag'] == 'yes'


class TestLoadDocument:

    @pytest.mark.parametrize("text,expected", [
        ("true", True),
        ("False", False),
        ("TRUE", True),
        ("on", "on"),
        ("No", "No"),
        ("OFF", "OFF"),
    ])
    def test_booleans_follow_yaml_12(self, text, expected):
        assert load_document(f"value: {text}\n") == {'value': expected}

    def test_other_scalars_still_resolve(self):
        assert load_document("a: 1\nb: 1.5\nc: null\nd: ~\n") == {'a': 1, 'b': 1.5, 'c': None, 'd': None}

    def test_safe_loader_is_untouched(self):
        load_document("on: 1\n")
        assert yaml.safe_load("on: 1\n") == {True: 1}
