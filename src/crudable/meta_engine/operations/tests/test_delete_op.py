import unittest
from unittest.mock import MagicMock

from crudable.exceptions import ForbiddenError, NotFoundError
from crudable.meta_engine.operations.delete_op import DeleteOperation
from crudable.meta_engine.permission.roles import Actor
from crudable.meta_engine.schemas.requests import CrudAction, CrudItem


class TestDeleteOperation(unittest.TestCase):
    def setUp(self):
        self.mock_engine = MagicMock()
        self.mock_engine.actor = Actor(id=7, roles="@member")
        self.mock_engine.store.quote.side_effect = lambda name: f'"{name}"'
        self.mock_store = self.mock_engine.store
        self.mock_perm = self.mock_engine.permission_service
        self.mock_guard = self.mock_engine.guard
        self.mock_visibility = self.mock_engine.visibility

        self.op = DeleteOperation(self.mock_engine)
        self.item = CrudItem(table="MusicAlbum", action=CrudAction.delete, id="10")

    def test_execute_success(self):
        self.mock_perm.can_perform.return_value = True
        self.mock_guard.load_row.return_value = {"id": 10, "granted": "shared"}
        self.mock_visibility.can_access_row.return_value = True

        result = self.op.execute("MusicAlbum", self.item)

        self.mock_perm.can_perform.assert_called_with(self.mock_engine.actor, "MusicAlbum", "delete")
        self.mock_store.execute.assert_called_once_with(
            'DELETE FROM "MusicAlbum" WHERE "id" = :row_id', {"row_id": 10}
        )
        self.assertEqual(result, {"id": 10, "table": "MusicAlbum", "status": "deleted"})

    def test_execute_permission_denied(self):
        self.mock_perm.can_perform.return_value = False

        with self.assertRaises(ForbiddenError):
            self.op.execute("MusicAlbum", self.item)

        self.mock_guard.load_row.assert_not_called()
        self.mock_store.execute.assert_not_called()

    def test_missing_row_before_row_check(self):
        self.mock_perm.can_perform.return_value = True
        self.mock_guard.load_row.side_effect = NotFoundError("MusicAlbum", "10")

        with self.assertRaises(NotFoundError):
            self.op.execute("MusicAlbum", self.item)
        self.mock_visibility.can_access_row.assert_not_called()

    def test_hidden_row(self):
        self.mock_perm.can_perform.return_value = True
        self.mock_guard.load_row.return_value = {"id": 10, "granted": "draft", "ownerId": 42}
        self.mock_visibility.can_access_row.return_value = False

        with self.assertRaises(ForbiddenError):
            self.op.execute("MusicAlbum", self.item)
        self.mock_store.execute.assert_not_called()


if __name__ == "__main__":
    unittest.main()
