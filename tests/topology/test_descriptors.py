"""
Tests for stack descriptors and import references.
"""

import pytest

from stackcompose.topology.descriptors import ImportRef, StackStatus
from stackcompose.topology.exceptions import StackStateError
from tests.topology.factories import StackDescriptorFactory


class TestImportRef:
    """Tests for ImportRef parsing."""

    def test_parse_dotted_string(self):
        ref = ImportRef.parse("vpc.vpcName")

        assert ref == ImportRef("vpc", "vpcName")
        assert str(ref) == "vpc.vpcName"

    def test_parse_splits_on_first_dot(self):
        """Keys may contain dots; stack names may not."""
        ref = ImportRef.parse("pgdb.cluster.endpoint")

        assert ref.stack == "pgdb"
        assert ref.key == "cluster.endpoint"

    def test_parse_tuple_and_ref(self):
        ref = ImportRef("vpc", "vpcId")

        assert ImportRef.parse(("vpc", "vpcId")) == ref
        assert ImportRef.parse(ref) is ref

    @pytest.mark.parametrize("raw", ["vpcName", ".vpcName", "vpc.", ""])
    def test_parse_rejects_malformed(self, raw):
        with pytest.raises(ValueError):
            ImportRef.parse(raw)


class TestStackDescriptor:
    """Tests for StackDescriptor construction."""

    @pytest.mark.parametrize("name", ["", "shared.nw"])
    def test_invalid_name_raises(self, name):
        with pytest.raises(ValueError):
            StackDescriptorFactory.create(name=name)

    def test_inputs_are_read_only(self):
        stack = StackDescriptorFactory.create(inputs={"cidr": "10.1.0.0/16"})

        with pytest.raises(TypeError):
            stack.inputs["cidr"] = "10.2.0.0/16"

    def test_inputs_are_copied(self):
        """Mutating the caller's dict does not change the stack."""
        inputs = {"cidr": "10.1.0.0/16"}
        stack = StackDescriptorFactory.create(inputs=inputs)

        inputs["cidr"] = "10.2.0.0/16"

        assert stack.inputs["cidr"] == "10.1.0.0/16"

    def test_imports_are_parsed_and_deduplicated(self):
        stack = StackDescriptorFactory.create(
            declared_imports=["vpc.vpcName", ("vpc", "vpcName"), "pgdb.clusterEndpoint"]
        )

        assert stack.declared_imports == (
            ImportRef("vpc", "vpcName"),
            ImportRef("pgdb", "clusterEndpoint"),
        )
        assert stack.source_stacks == ("vpc", "pgdb")

    def test_imports_from(self):
        stack = StackDescriptorFactory.create(declared_imports=["vpc.vpcName"])

        assert stack.imports_from("vpc")
        assert stack.imports_from("vpc", "vpcName")
        assert not stack.imports_from("vpc", "vpcId")
        assert not stack.imports_from("pgdb")

    def test_outputs_empty_until_synthesized(self):
        stack = StackDescriptorFactory.create(output_keys=["vpcId"])

        assert dict(stack.outputs) == {}
        assert stack.status is StackStatus.PENDING


class TestStackStatusTransitions:
    """Tests for the pending -> synthesizing -> synthesized | failed lifecycle."""

    def test_successful_lifecycle(self):
        stack = StackDescriptorFactory.create()

        stack.begin()
        assert stack.status is StackStatus.SYNTHESIZING

        stack.complete({"vpcId": "vpc-1"})
        assert stack.status is StackStatus.SYNTHESIZED
        assert stack.outputs["vpcId"] == "vpc-1"

    def test_outputs_are_frozen(self):
        stack = StackDescriptorFactory.create()
        stack.begin()
        stack.complete({"vpcId": "vpc-1"})

        with pytest.raises(TypeError):
            stack.outputs["vpcId"] = "vpc-2"

    def test_complete_requires_synthesizing(self):
        stack = StackDescriptorFactory.create()

        with pytest.raises(StackStateError):
            stack.complete({})

    def test_no_reentry_after_synthesized(self):
        stack = StackDescriptorFactory.create()
        stack.begin()
        stack.complete({})

        with pytest.raises(StackStateError):
            stack.begin()
        with pytest.raises(StackStateError):
            stack.fail(RuntimeError("late"))

    def test_fail_while_synthesizing(self):
        stack = StackDescriptorFactory.create()
        error = RuntimeError("boom")
        stack.begin()

        stack.fail(error)

        assert stack.status is StackStatus.FAILED
        assert stack.error is error

    def test_fail_before_start(self):
        """A stack whose producer failed goes straight from pending to failed."""
        stack = StackDescriptorFactory.create()

        stack.fail(RuntimeError("upstream"))

        assert stack.status is StackStatus.FAILED

    def test_no_reentry_after_failed(self):
        stack = StackDescriptorFactory.create()
        stack.fail(RuntimeError("boom"))

        with pytest.raises(StackStateError):
            stack.begin()
