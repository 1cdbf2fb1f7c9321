import unittest

from fastapi.testclient import TestClient

from api.main import app


class TestApplication(unittest.TestCase):
    def test_openapi_lists_all_routes(self):
        paths = app.openapi()["paths"]

        self.assertEqual(
            sorted(paths),
            [
                "/convert/to-canvas",
                "/convert/to-topology",
                "/definitions",
                "/definitions/{type_name}",
                "/samples",
                "/samples/{name}",
                "/validate",
            ],
        )
        self.assertEqual(app.openapi()["servers"], [{"url": "/api/v1"}])

    def test_lifespan_loads_registry_and_samples(self):
        with TestClient(app) as client:
            response = client.get("/samples")

        self.assertEqual(response.status_code, 200)
        self.assertIn("motion-detection", [sample["name"] for sample in response.json()])


if __name__ == "__main__":
    unittest.main()
