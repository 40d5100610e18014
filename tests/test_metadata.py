import io
import json

import pytest

from kubetest2.metadata import CustomJSON


def test_custom_json_add_write():
    meta = CustomJSON()
    meta.add("foo", "bar")
    meta.add("baz", "qwe")
    out = io.StringIO()
    meta.write(out)
    assert out.getvalue() == '{"baz":"qwe","foo":"bar"}'


def test_new_custom_json():
    meta = CustomJSON.load(io.StringIO('{"baz":"qwe","foo":"bar"}'))
    assert meta.data == {"foo": "bar", "baz": "qwe"}


def test_load_none_gives_empty():
    meta = CustomJSON.load(None)
    assert meta.data == {}


def test_fresh_document_writes_null():
    out = io.StringIO()
    CustomJSON().write(out)
    assert out.getvalue() == "null"


def test_duplicate_key_rejected():
    meta = CustomJSON()
    meta.add("tester-version", "v1")
    with pytest.raises(ValueError, match="key tester-version already exists in the metadata"):
        meta.add("tester-version", "v2")
    assert meta.data == {"tester-version": "v1"}


def test_duplicate_of_loaded_key_rejected():
    meta = CustomJSON.load(io.StringIO('{"foo":"bar"}'))
    with pytest.raises(ValueError):
        meta.add("foo", "other")


def test_invalid_json_raises():
    with pytest.raises(json.JSONDecodeError):
        CustomJSON.load(io.StringIO("{not json"))


def test_non_string_values_rejected():
    with pytest.raises(ValueError):
        CustomJSON.load(io.StringIO('{"foo": 1}'))


def test_round_trip_preserves_data():
    meta = CustomJSON({"a": "1", "b": "ü<&>"})
    out = io.StringIO()
    meta.write(out)
    again = CustomJSON.load(io.StringIO(out.getvalue()))
    assert again.data == meta.data


def test_html_characters_are_escaped():
    out = io.StringIO()
    CustomJSON({"k": "<&>"}).write(out)
    assert out.getvalue() == '{"k":"\\u003c\\u0026\\u003e"}'


def test_data_is_a_copy():
    meta = CustomJSON({"a": "1"})
    meta.data["b"] = "2"
    assert meta.data == {"a": "1"}