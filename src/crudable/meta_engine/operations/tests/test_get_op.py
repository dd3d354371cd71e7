import unittest
from unittest.mock import MagicMock

from crudable.meta_engine.operations.get_op import GetOperation
from crudable.meta_engine.permission.roles import Actor
from crudable.meta_engine.schemas.requests import CrudItem, FetchOptions, FetchResult


class TestGetOperation(unittest.TestCase):
    def setUp(self):
        self.mock_engine = MagicMock()
        self.mock_engine.actor = Actor(id=7, roles="@member")
        self.mock_guard = self.mock_engine.guard
        self.op = GetOperation(self.mock_engine)

    def test_get_by_id(self):
        self.mock_guard.fetch_one.return_value = FetchResult(row={"id": 10})
        item = CrudItem(table="MusicAlbum", id=10, options=FetchOptions(compact=True))

        result = self.op.execute("MusicAlbum", item)

        self.mock_guard.fetch_one.assert_called_with(
            self.mock_engine.actor, "MusicAlbum", 10, item.options
        )
        self.mock_guard.fetch_many.assert_not_called()
        self.assertEqual(result, {"success": True, "row": {"id": 10}})

    def test_list(self):
        self.mock_guard.fetch_many.return_value = FetchResult(rows=[])

        result = self.op.execute("MusicAlbum", CrudItem(table="MusicAlbum"))

        self.mock_guard.fetch_many.assert_called_once()
        self.assertEqual(result, {"success": True, "rows": []})


if __name__ == "__main__":
    unittest.main()
