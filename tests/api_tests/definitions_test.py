import unittest
from unittest.mock import MagicMock, patch

from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.routes.definitions import router as definitions_router


class TestDefinitionsAPI(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        """Set up test client once for all tests."""
        app = FastAPI()
        app.include_router(definitions_router, prefix="/definitions")
        cls.client = TestClient(app)

    def test_get_definitions(self):
        response = self.client.get("/definitions")

        self.assertEqual(response.status_code, 200)
        definitions = {item["type_name"]: item for item in response.json()}
        rtsp = definitions["#Microsoft.Media.MediaGraphRtspSource"]
        self.assertEqual(rtsp["kind"], "source")
        self.assertEqual(
            rtsp["ports"],
            [{"name": "output", "types": ["application", "audio", "video"], "is_input": False}],
        )

    def test_get_definition(self):
        response = self.client.get(
            "/definitions/%23Microsoft.Media.MediaGraphIoTHubMessageSink"
        )

        self.assertEqual(response.status_code, 200)
        definition = response.json()
        self.assertEqual(definition["kind"], "sink")
        self.assertEqual(definition["display_name_property"], "name")
        self.assertEqual(
            definition["ports"],
            [{"name": "input-events", "types": ["application"], "is_input": True}],
        )
        properties = {item["name"]: item for item in definition["properties"]}
        self.assertTrue(properties["hubOutputName"]["required"])

    def test_get_definition_nested_properties(self):
        response = self.client.get(
            "/definitions/%23Microsoft.Media.MediaGraphRtspSource"
        )

        self.assertEqual(response.status_code, 200)
        properties = {item["name"]: item for item in response.json()["properties"]}
        self.assertEqual(properties["transport"]["allowed_values"], ["Http", "Tcp"])
        endpoint = {item["name"]: item for item in properties["endpoint"]["properties"]}
        self.assertTrue(endpoint["url"]["required"])
        self.assertFalse(endpoint["credentials"]["required"])

    def test_get_definition_not_found(self):
        response = self.client.get("/definitions/%23Custom.Unknown")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(
            response.json(), {"message": "Node type '#Custom.Unknown' not found."}
        )

    @patch("api.routes.definitions.get_schema_registry")
    def test_get_definition_unexpected_error(self, mock_get_registry):
        mock_registry = MagicMock()
        mock_registry.get_node_definition.side_effect = RuntimeError("boom")
        mock_get_registry.return_value = mock_registry

        response = self.client.get("/definitions/anything")

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"message": "Unexpected error: boom"})


if __name__ == "__main__":
    unittest.main()
