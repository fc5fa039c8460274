import pytest

from stackdeploy.deploy.models import (
    ChangeSet,
    ChangeSetStatus,
    PackagedTemplate,
    ParameterDiff,
    ParameterSet,
    StackIdentity,
    StackState,
    Template,
)


@pytest.mark.parametrize(
    "status,state",
    [
        (None, StackState.ABSENT),
        ("REVIEW_IN_PROGRESS", StackState.ABSENT),
        ("CREATE_IN_PROGRESS", StackState.CREATE_IN_PROGRESS),
        ("UPDATE_COMPLETE_CLEANUP_IN_PROGRESS", StackState.UPDATE_IN_PROGRESS),
        ("UPDATE_ROLLBACK_IN_PROGRESS", StackState.UPDATE_IN_PROGRESS),
        ("UPDATE_ROLLBACK_COMPLETE", StackState.UPDATE_COMPLETE),
        ("ROLLBACK_COMPLETE", StackState.ROLLBACK_COMPLETE),
        ("DELETE_IN_PROGRESS", StackState.DELETE_IN_PROGRESS),
        ("UPDATE_ROLLBACK_FAILED", StackState.FAILED),
        ("SOMETHING_NEW", StackState.FAILED),
    ],
)
def test_stack_state_from_status(status, state):
    assert StackState.from_status(status) == state


def test_stack_state_properties():
    assert StackState.ROLLBACK_IN_PROGRESS.in_progress
    assert not StackState.ROLLBACK_COMPLETE.in_progress
    assert StackState.UPDATE_COMPLETE.healthy
    assert not StackState.ABSENT.healthy


def test_stack_identity():
    assert str(StackIdentity("app-test", "eu-west-1")) == "eu-west-1/app-test"
    assert str(StackIdentity("app-test", "eu-west-1", "111111111111")) == (
        "111111111111/eu-west-1/app-test"
    )


class TestTemplate:
    def test_fingerprint_depends_on_content(self):
        assert Template("a: 1").fingerprint == Template(b"a: 1").fingerprint
        assert Template("a: 1").fingerprint != Template("a: 2").fingerprint
        assert Template("a: 1") == Template(b"a: 1")

    def test_from_file(self, tmp_path):
        path = tmp_path / "template.yml"
        path.write_text("Resources: {}")

        template = Template.from_file(path)

        assert template.body == b"Resources: {}"
        assert template.size == 13


class TestParameterSet:
    def test_equality_ignores_order(self):
        assert ParameterSet({"A": "1", "B": "2"}) == ParameterSet([("B", "2"), ("A", "1")])
        assert ParameterSet({"A": "1"}) != ParameterSet({"A": "2"})

    def test_keeps_order(self):
        assert list(ParameterSet([("B", "2"), ("A", "1")])) == ["B", "A"]

    def test_values_are_strings(self):
        assert dict(ParameterSet({"Count": 3, "Empty": None})) == {"Count": "3", "Empty": ""}

    def test_duplicate_names(self):
        with pytest.raises(ValueError, match="Duplicate parameter name A"):
            ParameterSet([("A", "1"), ("A", "2")])

    def test_provider_format(self):
        parameters = ParameterSet.from_provider(
            [{"ParameterKey": "A", "ParameterValue": "1"}, {"ParameterKey": "B"}]
        )

        assert parameters == {"A": "1", "B": ""}
        assert parameters.to_provider() == [
            {"ParameterKey": "A", "ParameterValue": "1"},
            {"ParameterKey": "B", "ParameterValue": ""},
        ]

    def test_merge(self):
        merged = ParameterSet({"A": "1", "B": "2"}).merge({"B": "3", "C": "4"})

        assert merged == {"A": "1", "B": "3", "C": "4"}


def test_parameter_diff_summary():
    diff = ParameterDiff(added={"C": "4"}, removed={"A": "1"}, changed={"B": ("2", "3")})

    assert diff.has_changes
    assert diff.summary() == ["+ C=4", "- A", "~ B: 2 -> 3"]
    assert not ParameterDiff().has_changes


def test_packaged_template():
    template = Template("Resources: {}")

    assert PackagedTemplate(template).to_provider() == {"TemplateBody": "Resources: {}"}
    packaged = PackagedTemplate(template, url="https://bucket.s3.amazonaws.com/key.yml")
    assert not packaged.inline
    assert packaged.to_provider() == {"TemplateURL": "https://bucket.s3.amazonaws.com/key.yml"}


def test_change_set_name():
    stack = StackIdentity("app-test", "us-east-1")
    change_set = ChangeSet(
        id="arn:aws:cloudformation:us-east-1:000000000000:changeSet/stackdeploy-1234/abcd",
        stack=stack,
        change_set_type="CREATE",
        status=ChangeSetStatus.READY,
    )

    assert change_set.name == "stackdeploy-1234"
    assert ChangeSet("cs-1", stack, "CREATE", ChangeSetStatus.READY).name == "cs-1"
