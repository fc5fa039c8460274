from stackdeploy.utils.json import parse_json_or_yaml


def test_parse_json():
    assert parse_json_or_yaml('{"Resources": {}}') == {"Resources": {}}


def test_parse_yaml():
    markup = """
ImageTag: v2
Count: 3
"""
    assert parse_json_or_yaml(markup) == {"ImageTag": "v2", "Count": 3}
