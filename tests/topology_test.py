import unittest

from topology import (
    InstanceDocument,
    NodeKind,
    OutputSelector,
    ParameterReference,
    TopologyDocument,
    dump_value,
    iter_parameter_references,
    parse_value,
)


def make_topology_dict() -> dict:
    return {
        "name": "recording",
        "properties": {
            "description": "Record motion",
            "parameters": [
                {"name": "rtspUrl", "type": "String", "description": "Camera URL"},
                {"name": "sensitivity", "type": "String", "default": "Medium"},
            ],
            "sources": [
                {
                    "@type": "#Microsoft.Media.MediaGraphRtspSource",
                    "name": "rtspSource",
                    "endpoint": {"url": "${rtspUrl}"},
                }
            ],
            "processors": [
                {
                    "@type": "#Microsoft.Media.MediaGraphMotionDetectionProcessor",
                    "name": "motion",
                    "sensitivity": "${sensitivity}",
                    "inputs": [{"nodeName": "rtspSource"}],
                }
            ],
            "sinks": [
                {
                    "@type": "#Microsoft.Media.MediaGraphIoTHubMessageSink",
                    "name": "hubSink",
                    "hubOutputName": "events",
                    "inputs": [
                        {
                            "nodeName": "motion",
                            "outputSelectors": [
                                {
                                    "property": "mediaType",
                                    "operator": "is",
                                    "value": "application",
                                }
                            ],
                        }
                    ],
                }
            ],
        },
    }


class TestTopologyDocument(unittest.TestCase):
    def test_from_dict_keeps_declaration_order(self):
        topology = TopologyDocument.from_dict(make_topology_dict())

        self.assertEqual(topology.name, "recording")
        self.assertEqual(topology.description, "Record motion")
        self.assertEqual(
            [node.name for node in topology.nodes], ["rtspSource", "motion", "hubSink"]
        )
        self.assertEqual(
            [node.kind for node in topology.nodes],
            [NodeKind.SOURCE, NodeKind.PROCESSOR, NodeKind.SINK],
        )
        self.assertEqual([p.name for p in topology.parameters], ["rtspUrl", "sensitivity"])
        self.assertEqual(topology.parameters[1].default, "Medium")

    def test_parameter_references_are_typed(self):
        topology = TopologyDocument.from_dict(make_topology_dict())

        source = topology.get_node("rtspSource")
        self.assertEqual(source.properties["endpoint"]["url"], ParameterReference("rtspUrl"))
        motion = topology.get_node("motion")
        self.assertEqual(motion.properties["sensitivity"], ParameterReference("sensitivity"))

    def test_inputs_and_selectors(self):
        topology = TopologyDocument.from_dict(make_topology_dict())

        sink = topology.get_node("hubSink")
        self.assertEqual(len(sink.inputs), 1)
        self.assertEqual(sink.inputs[0].node_name, "motion")
        self.assertEqual(
            sink.inputs[0].output_selectors,
            [OutputSelector("mediaType", "is", "application")],
        )
        self.assertEqual(sink.inputs[0].media_types(), ["application"])

    def test_to_dict_round_trip(self):
        data = make_topology_dict()
        self.assertEqual(TopologyDocument.from_dict(data).to_dict(), data)

    def test_to_dict_omits_empty_collections(self):
        topology = TopologyDocument(name="empty")
        self.assertEqual(topology.to_dict(), {"name": "empty", "properties": {}})

    def test_duplicate_node_name_rejected(self):
        data = make_topology_dict()
        data["properties"]["sinks"][0]["name"] = "motion"

        with self.assertRaises(ValueError) as context:
            TopologyDocument.from_dict(data)
        self.assertIn("Duplicate node name 'motion'", str(context.exception))

    def test_dangling_input_rejected(self):
        data = make_topology_dict()
        data["properties"]["sinks"][0]["inputs"][0]["nodeName"] = "camera"

        with self.assertRaises(ValueError) as context:
            TopologyDocument.from_dict(data)
        self.assertIn("unknown input node 'camera'", str(context.exception))

    def test_reference_errors_tolerated_without_check(self):
        data = make_topology_dict()
        data["properties"]["sinks"][0]["inputs"][0]["nodeName"] = "camera"

        topology = TopologyDocument.from_dict(data, check_references=False)
        self.assertEqual(topology.get_node("hubSink").inputs[0].node_name, "camera")

    def test_node_without_type_rejected(self):
        data = make_topology_dict()
        del data["properties"]["sources"][0]["@type"]

        with self.assertRaises(ValueError):
            TopologyDocument.from_dict(data)

    def test_non_mapping_rejected(self):
        with self.assertRaises(ValueError):
            TopologyDocument.from_dict(["not", "a", "mapping"])

    def test_copy_is_deep(self):
        topology = TopologyDocument.from_dict(make_topology_dict())
        duplicate = topology.copy()
        duplicate.nodes[0].properties["endpoint"]["url"] = "rtsp://changed"

        self.assertEqual(
            topology.nodes[0].properties["endpoint"]["url"], ParameterReference("rtspUrl")
        )


class TestInstanceDocument(unittest.TestCase):
    def test_from_dict_and_lookup(self):
        instance = InstanceDocument.from_dict(
            {
                "name": "frontDoor",
                "properties": {
                    "topologyName": "recording",
                    "parameters": [{"name": "rtspUrl", "value": "rtsp://camera"}],
                },
            }
        )

        self.assertEqual(instance.topology_name, "recording")
        self.assertEqual(instance.get_parameter_value("rtspUrl"), "rtsp://camera")
        self.assertIsNone(instance.get_parameter_value("unknown"))

    def test_to_dict(self):
        instance = InstanceDocument(name="frontDoor", topology_name="recording")
        self.assertEqual(
            instance.to_dict(),
            {
                "name": "frontDoor",
                "properties": {
                    "topologyName": "recording",
                    "description": "",
                    "parameters": [],
                },
            },
        )


class TestValueHelpers(unittest.TestCase):
    def test_only_whole_strings_are_references(self):
        self.assertEqual(parse_value("${url}"), ParameterReference("url"))
        self.assertEqual(parse_value("prefix-${url}"), "prefix-${url}")
        self.assertEqual(parse_value(42), 42)

    def test_dump_value_restores_strings(self):
        value = {"a": ParameterReference("x"), "b": [ParameterReference("y"), "z"]}
        self.assertEqual(dump_value(value), {"a": "${x}", "b": ["${y}", "z"]})

    def test_iter_parameter_references_paths(self):
        value = {
            "endpoint": {"url": ParameterReference("url")},
            "list": [ParameterReference("item")],
            "literal": "text",
        }
        self.assertEqual(
            list(iter_parameter_references(value)),
            [
                (("endpoint", "url"), ParameterReference("url")),
                (("list",), ParameterReference("item")),
            ],
        )


if __name__ == "__main__":
    unittest.main()
