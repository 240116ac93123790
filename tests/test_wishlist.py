import unittest

from bson import ObjectId

import wishlist
from errors import AppError, ErrorKind
from factories import make_db, make_phone, make_user


class WishlistTestCase(unittest.TestCase):
    def setUp(self):
        self.db = make_db()
        self.seller = make_user(self.db, "Seller")
        self.uid = make_user(self.db, "Buyer").user_id
        self.phone_id = make_phone(self.db, self.seller)

    def test_add_keeps_order_and_rejects_duplicates(self):
        other = make_phone(self.db, self.seller, title="iPhone 8", brand="Apple")
        wishlist.add_to_wishlist(self.db, self.uid, self.phone_id)
        phones = wishlist.add_to_wishlist(self.db, self.uid, other)
        self.assertEqual([p["id"] for p in phones], [self.phone_id, other])

        with self.assertRaises(AppError) as ctx:
            wishlist.add_to_wishlist(self.db, self.uid, self.phone_id)
        self.assertEqual(ctx.exception.kind, ErrorKind.BAD_REQUEST)

    def test_add_rejects_disabled_and_missing(self):
        disabled = make_phone(self.db, self.seller, is_disabled=True)
        for phone_id, kind in ((disabled, ErrorKind.BAD_REQUEST), (str(ObjectId()), ErrorKind.RESOURCE_NOT_FOUND)):
            with self.assertRaises(AppError) as ctx:
                wishlist.add_to_wishlist(self.db, self.uid, phone_id)
            self.assertEqual(ctx.exception.kind, kind)

    def test_disabled_phones_drop_out_of_view(self):
        wishlist.add_to_wishlist(self.db, self.uid, self.phone_id)
        self.db["phone"].update_one({"_id": ObjectId(self.phone_id)}, {"$set": {"is_disabled": True}})
        self.assertEqual(wishlist.get_wishlist(self.db, self.uid), [])

    def test_remove(self):
        wishlist.add_to_wishlist(self.db, self.uid, self.phone_id)
        self.assertEqual(wishlist.remove_from_wishlist(self.db, self.uid, self.phone_id), [])
        with self.assertRaises(AppError) as ctx:
            wishlist.remove_from_wishlist(self.db, self.uid, self.phone_id)
        self.assertEqual(ctx.exception.kind, ErrorKind.RESOURCE_NOT_FOUND)


if __name__ == "__main__":
    unittest.main()
