import unittest

from graph import (
    LAYOUT_NODE_SPACING,
    LAYOUT_RANK_SPACING,
    Graph,
    NodeState,
    Position,
    ZoomPanSettings,
    auto_layout,
    intersect_types,
    types_compatible,
)
from schema_registry import NODE_DEFINITIONS_PATH, SchemaRegistry
from topology import NodeKind, OutputSelector, ParameterReference, TopologyDocument

RTSP_SOURCE = "#Microsoft.Media.MediaGraphRtspSource"
MOTION = "#Microsoft.Media.MediaGraphMotionDetectionProcessor"
SIGNAL_GATE = "#Microsoft.Media.MediaGraphSignalGateProcessor"
ASSET_SINK = "#Microsoft.Media.MediaGraphAssetSink"
HUB_SINK = "#Microsoft.Media.MediaGraphIoTHubMessageSink"

registry = SchemaRegistry.from_file(NODE_DEFINITIONS_PATH)


def media_selector(value: str) -> dict:
    return {"property": "mediaType", "operator": "is", "value": value}


def make_topology() -> TopologyDocument:
    return TopologyDocument.from_dict(
        {
            "name": "motion-recording",
            "properties": {
                "description": "Record when motion is detected",
                "parameters": [{"name": "rtspUrl", "type": "String"}],
                "sources": [
                    {
                        "@type": RTSP_SOURCE,
                        "name": "rtspSource",
                        "endpoint": {"url": "${rtspUrl}"},
                    }
                ],
                "processors": [
                    {
                        "@type": MOTION,
                        "name": "motion",
                        "inputs": [{"nodeName": "rtspSource"}],
                    },
                    {
                        "@type": SIGNAL_GATE,
                        "name": "gate",
                        "inputs": [
                            {
                                "nodeName": "motion",
                                "outputSelectors": [media_selector("application")],
                            },
                            {
                                "nodeName": "rtspSource",
                                "outputSelectors": [media_selector("video")],
                            },
                        ],
                    },
                ],
                "sinks": [
                    {
                        "@type": ASSET_SINK,
                        "name": "assetSink",
                        "assetNamePattern": "asset",
                        "inputs": [{"nodeName": "gate"}],
                    }
                ],
            },
        }
    )


class TestTopologyToCanvas(unittest.TestCase):
    def test_node_ids_are_sequential(self):
        graph = Graph.from_topology(make_topology(), registry)

        self.assertEqual([node.id for node in graph.nodes], ["0", "1", "2", "3"])
        self.assertEqual(
            [node.name for node in graph.nodes],
            ["rtspSource", "motion", "gate", "assetSink"],
        )

    def test_edge_ids_are_sequential(self):
        graph = Graph.from_topology(make_topology(), registry)

        self.assertEqual([edge.id for edge in graph.edges], ["0", "1", "2", "3"])
        self.assertEqual(
            [graph.edge_endpoints(edge) for edge in graph.edges],
            [
                ("rtspSource", "motion"),
                ("motion", "gate"),
                ("rtspSource", "gate"),
                ("gate", "assetSink"),
            ],
        )

    def test_ports_follow_definitions(self):
        graph = Graph.from_topology(make_topology(), registry)

        gate = graph.get_node_by_name("gate")
        self.assertEqual(
            [port.id for port in gate.input_ports], ["input-media", "input-trigger"]
        )
        self.assertEqual(gate.output_port.types, frozenset({"video", "audio"}))
        self.assertEqual(graph.get_node_by_name("rtspSource").input_ports, ())

    def test_selectors_pick_types_and_port(self):
        graph = Graph.from_topology(make_topology(), registry)

        trigger, media = graph.edges[1], graph.edges[2]
        self.assertEqual(trigger.types, ("application",))
        self.assertEqual(trigger.target_port, "input-trigger")
        self.assertFalse(trigger.inherit_types)
        self.assertEqual(media.types, ("video",))
        self.assertEqual(media.target_port, "input-media")

    def test_edges_without_selectors_inherit_port_types(self):
        graph = Graph.from_topology(make_topology(), registry)

        edge = graph.edges[3]
        self.assertTrue(edge.inherit_types)
        self.assertEqual(edge.types, ("audio", "video"))

    def test_unknown_type_gets_wildcard_ports(self):
        topology = make_topology()
        topology.nodes[1].type = "#Custom.Detector"
        graph = Graph.from_topology(topology, registry)

        node = graph.get_node_by_name("motion")
        self.assertEqual(node.kind, NodeKind.PROCESSOR)
        self.assertEqual(graph.edges[0].types, ("application", "audio", "video"))

    def test_properties_keep_parameter_references(self):
        graph = Graph.from_topology(make_topology(), registry)

        source = graph.get_node_by_name("rtspSource")
        self.assertEqual(source.properties["endpoint"]["url"], ParameterReference("rtspUrl"))

    def test_dangling_input_rejected(self):
        topology = make_topology()
        topology.nodes[3].inputs[0].node_name = "camera"

        with self.assertRaises(ValueError):
            Graph.from_topology(topology, registry)


class TestCanvasToTopology(unittest.TestCase):
    def test_round_trip(self):
        topology = make_topology()
        graph = Graph.from_topology(topology, registry)

        self.assertEqual(graph.to_topology(), topology)
        self.assertEqual(graph.to_topology().to_dict(), topology.to_dict())

    def test_round_trip_after_relayout(self):
        topology = make_topology()
        graph = Graph.from_topology(topology, registry).relayout(horizontal=False)

        self.assertEqual(graph.to_topology(), topology)

    def test_other_selectors_preserved(self):
        topology = make_topology()
        topology.nodes[3].inputs[0].output_selectors = [
            OutputSelector("source", "is", "primary")
        ]
        graph = Graph.from_topology(topology, registry)

        self.assertEqual(graph.to_topology(), topology)

    def test_explicit_edge_types_serialize_as_selectors(self):
        graph = Graph.from_topology(make_topology(), registry)
        graph = graph.with_edge_types("3", ["video"])

        sink = graph.to_topology().get_node("assetSink")
        self.assertEqual(
            sink.inputs[0].output_selectors, [OutputSelector("mediaType", "is", "video")]
        )

    def test_dict_round_trip(self):
        graph = Graph.from_topology(
            make_topology(), registry, zoom_pan=ZoomPanSettings((2.0, 0.0, 0.0, 2.0, 5.0, 5.0))
        ).with_selection(["1"])

        restored = Graph.from_dict(graph.to_dict())
        self.assertEqual(restored, graph)
        self.assertEqual(restored.get_node("1").state, NodeState.SELECTED)

    def test_from_dict_rejects_unknown_edge_node(self):
        data = Graph.from_topology(make_topology(), registry).to_dict()
        data["edges"][0]["target"] = "42"

        with self.assertRaises(ValueError):
            Graph.from_dict(data)

    def test_from_dict_missing_key(self):
        data = Graph.from_topology(make_topology(), registry).to_dict()
        del data["nodes"][0]["type"]

        with self.assertRaises(ValueError):
            Graph.from_dict(data)


class TestCanvasEdits(unittest.TestCase):
    def setUp(self):
        self.graph = Graph.from_topology(make_topology(), registry)

    def test_rename_propagates_to_touching_edges_only(self):
        renamed = self.graph.with_node_renamed("rtspSource", "camera")

        endpoints = [renamed.edge_endpoints(edge) for edge in renamed.edges]
        self.assertEqual(
            endpoints,
            [
                ("camera", "motion"),
                ("motion", "gate"),
                ("camera", "gate"),
                ("gate", "assetSink"),
            ],
        )
        topology = renamed.to_topology()
        self.assertEqual(topology.get_node("motion").inputs[0].node_name, "camera")
        self.assertEqual(topology.get_node("gate").inputs[0].node_name, "motion")
        self.assertEqual(topology.get_node("gate").inputs[1].node_name, "camera")

    def test_rename_node_without_edges(self):
        graph = self.graph.with_node_added(HUB_SINK, registry, name="orphan")
        renamed = graph.with_node_renamed("orphan", "lonely")

        self.assertEqual(renamed.edges, graph.edges)
        self.assertIsNotNone(renamed.get_node_by_name("lonely"))

    def test_rename_to_taken_name_is_not_rejected(self):
        renamed = self.graph.with_node_renamed("rtspSource", "motion")

        self.assertEqual(
            [node.name for node in renamed.nodes][:2], ["motion", "motion"]
        )
        with self.assertRaises(ValueError):
            renamed.to_topology()

    def test_rename_unknown_node(self):
        with self.assertRaises(ValueError):
            self.graph.with_node_renamed("camera", "anything")

    def test_edits_return_new_snapshots(self):
        renamed = self.graph.with_node_renamed("motion", "detector")

        self.assertIsNot(renamed, self.graph)
        self.assertIsNotNone(self.graph.get_node_by_name("motion"))
        self.assertIsNone(self.graph.get_node_by_name("detector"))

    def test_add_node_generates_unique_name(self):
        graph = self.graph.with_node_added(MOTION, registry)
        graph = graph.with_node_added(MOTION, registry)

        self.assertEqual(
            [node.name for node in graph.nodes[-2:]],
            ["mediaGraphMotionDetectionProcessor1", "mediaGraphMotionDetectionProcessor2"],
        )
        self.assertEqual(graph.nodes[-1].id, "5")
        self.assertEqual(graph.nodes[-1].kind, NodeKind.PROCESSOR)

    def test_add_node_keeps_existing_positions(self):
        moved = self.graph.with_node_moved("0", Position(10.0, 20.0))
        graph = moved.with_node_added(HUB_SINK, registry, position=Position(1.0, 2.0))

        self.assertEqual(graph.get_node("0").position, Position(10.0, 20.0))
        self.assertEqual(graph.nodes[-1].position, Position(1.0, 2.0))
        self.assertEqual(graph.nodes[-1].kind, NodeKind.SINK)

    def test_remove_node_drops_attached_edges(self):
        graph = self.graph.with_node_removed("1")

        self.assertIsNone(graph.get_node("1"))
        self.assertEqual([edge.id for edge in graph.edges], ["2", "3"])

    def test_connect_picks_compatible_port(self):
        graph = self.graph.with_node_added(SIGNAL_GATE, registry, name="gate2")
        gate2 = graph.get_node_by_name("gate2")
        graph = graph.with_edge_added("1", gate2.id)

        edge = graph.edges[-1]
        self.assertEqual(edge.id, "4")
        self.assertEqual(edge.target_port, "input-media")
        self.assertEqual(edge.types, ("video",))
        self.assertTrue(edge.inherit_types)

    def test_connect_explicit_port(self):
        graph = self.graph.with_node_added(SIGNAL_GATE, registry, name="gate2")
        gate2 = graph.get_node_by_name("gate2")
        graph = graph.with_edge_added("1", gate2.id, target_port="input-trigger")

        self.assertEqual(graph.edges[-1].types, ("application",))

    def test_connect_rejects_invalid_endpoints(self):
        with self.assertRaises(ValueError):
            self.graph.with_edge_added("3", "1")  # asset sink has no output
        with self.assertRaises(ValueError):
            self.graph.with_edge_added("1", "0")  # source has no input
        with self.assertRaises(ValueError):
            self.graph.with_edge_added("1", "2", target_port="output")

    def test_set_node_properties(self):
        graph = self.graph.with_node_properties("1", {"sensitivity": "High"})

        self.assertEqual(graph.get_node("1").properties, {"sensitivity": "High"})
        self.assertEqual(self.graph.get_node("1").properties, {})


class TestLayout(unittest.TestCase):
    def test_horizontal_ranks_by_input_depth(self):
        graph = Graph.from_topology(make_topology(), registry)
        positions = {node.name: node.position for node in graph.nodes}

        self.assertEqual(positions["rtspSource"], Position(0.0, 0.0))
        self.assertEqual(positions["motion"], Position(LAYOUT_RANK_SPACING, 0.0))
        self.assertEqual(positions["gate"], Position(2 * LAYOUT_RANK_SPACING, 0.0))
        self.assertEqual(positions["assetSink"], Position(3 * LAYOUT_RANK_SPACING, 0.0))

    def test_vertical_layout_swaps_axes(self):
        graph = Graph.from_topology(make_topology(), registry, horizontal=False)

        self.assertEqual(
            graph.get_node_by_name("motion").position, Position(0.0, LAYOUT_RANK_SPACING)
        )

    def test_ties_keep_declaration_order(self):
        topology = TopologyDocument.from_dict(
            {
                "name": "two-sources",
                "properties": {
                    "sources": [
                        {"@type": RTSP_SOURCE, "name": "b"},
                        {"@type": RTSP_SOURCE, "name": "a"},
                    ]
                },
            }
        )
        graph = Graph.from_topology(topology, registry)

        self.assertEqual(graph.get_node_by_name("b").position, Position(0.0, 0.0))
        self.assertEqual(
            graph.get_node_by_name("a").position, Position(0.0, LAYOUT_NODE_SPACING)
        )

    def test_known_positions_preserved(self):
        positions = {"motion": Position(7.0, 8.0)}
        graph = Graph.from_topology(make_topology(), registry, positions=positions)

        self.assertEqual(graph.get_node_by_name("motion").position, Position(7.0, 8.0))

    def test_orientation_toggle_relayouts_everything(self):
        graph = Graph.from_topology(make_topology(), registry)
        graph = graph.with_node_moved("1", Position(999.0, 999.0)).relayout(horizontal=False)

        self.assertFalse(graph.horizontal)
        self.assertEqual(graph.get_node("1").position, Position(0.0, LAYOUT_RANK_SPACING))

    def test_layout_is_deterministic(self):
        first = Graph.from_topology(make_topology(), registry)
        second = Graph.from_topology(make_topology(), registry)
        self.assertEqual(first.positions(), second.positions())

    def test_cycle_nodes_placed_after_last_rank(self):
        graph = Graph.from_topology(make_topology(), registry)
        graph = graph.with_node_added(SIGNAL_GATE, registry, name="x")
        graph = graph.with_node_added(SIGNAL_GATE, registry, name="y")
        x = graph.get_node_by_name("x").id
        y = graph.get_node_by_name("y").id
        graph = graph.with_edge_added(x, y).with_edge_added(y, x)

        positions = auto_layout(graph.nodes, graph.edges)
        self.assertEqual(positions[x].x, 4 * LAYOUT_RANK_SPACING)
        self.assertEqual(positions[y].x, 4 * LAYOUT_RANK_SPACING)


class TestTypeHelpers(unittest.TestCase):
    def test_intersect_types(self):
        self.assertEqual(intersect_types({"video", "audio"}, {"video"}), ("video",))
        self.assertEqual(intersect_types({"video"}, {"application"}), ())
        self.assertEqual(intersect_types({"*"}, {"video", "audio"}), ("audio", "video"))
        self.assertEqual(intersect_types({"*"}, {"*"}), ("*",))

    def test_types_compatible(self):
        self.assertTrue(types_compatible(("video",), {"video", "audio"}))
        self.assertFalse(types_compatible(("video", "application"), {"video"}))
        self.assertTrue(types_compatible(("anything",), {"*"}))


if __name__ == "__main__":
    unittest.main()
