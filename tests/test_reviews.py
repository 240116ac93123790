import unittest

from bson import ObjectId

import reviews
from catalog import average_rating
from errors import AppError, ErrorKind
from factories import make_admin, make_db, make_phone, make_user


class FilterVisibleReviewsTestCase(unittest.TestCase):
    def setUp(self):
        self.reviews = [
            {"id": "r1", "reviewer_id": "u1", "rating": 5, "is_hidden": False},
            {"id": "r2", "reviewer_id": "u1", "rating": 1, "is_hidden": True},
            {"id": "r3", "reviewer_id": "u4", "rating": 2, "is_hidden": True},
        ]

    def ids(self, viewer):
        return [r["id"] for r in reviews.filter_visible_reviews(self.reviews, viewer, "seller")]

    def test_unrelated_viewer_sees_only_shown_reviews(self):
        self.assertEqual(self.ids("u3"), ["r1"])

    def test_anonymous_viewer_sees_only_shown_reviews(self):
        self.assertEqual(self.ids(None), ["r1"])

    def test_author_sees_own_hidden_reviews(self):
        self.assertEqual(self.ids("u1"), ["r1", "r2"])

    def test_seller_sees_everything_in_stored_order(self):
        self.assertEqual(self.ids("seller"), ["r1", "r2", "r3"])

    def test_average_rating_ignores_hidden(self):
        self.assertEqual(average_rating(self.reviews), 5.0)
        self.assertEqual(average_rating([]), 0.0)
        self.assertEqual(average_rating([{"rating": 4}, {"rating": 3}]), 3.5)


class ReviewModerationTestCase(unittest.TestCase):
    def setUp(self):
        self.db = make_db()
        self.u1 = make_user(self.db, "Author")
        self.u2 = make_user(self.db, "Seller")
        self.u3 = make_user(self.db, "Stranger")
        self.phone_id = make_phone(self.db, self.u2)
        self.r1 = reviews.add_review(self.db, self.phone_id, 4, "Solid phone", self.u1)

    def stored(self, review_id=None):
        phone = self.db["phone"].find_one({"_id": ObjectId(self.phone_id)})
        return reviews.find_review(phone, review_id or self.r1["id"])

    # ---------- Adding ----------

    def test_add_review_defaults(self):
        stored = self.stored()
        self.assertFalse(stored["is_hidden"])
        self.assertEqual(stored["reviewer_id"], self.u1.user_id)
        self.assertEqual(self.r1["reviewer"]["name"], "Author")

    def test_newest_review_is_first(self):
        later = reviews.add_review(self.db, self.phone_id, 2, "Battery is weak", self.u3)
        phone = self.db["phone"].find_one({"_id": ObjectId(self.phone_id)})
        self.assertEqual([r["id"] for r in phone["reviews"]], [later["id"], self.r1["id"]])

    def test_one_review_per_user(self):
        with self.assertRaises(AppError) as ctx:
            reviews.add_review(self.db, self.phone_id, 5, "Again", self.u1)
        self.assertEqual(ctx.exception.kind, ErrorKind.BAD_REQUEST)

    def test_any_user_may_review_without_purchase(self):
        review = reviews.add_review(self.db, self.phone_id, 3, "Never bought it", self.u3)
        self.assertEqual(review["rating"], 3)

    def test_add_review_rejects_bad_input(self):
        disabled = make_phone(self.db, self.u2, title="Off", is_disabled=True)
        cases = [
            (disabled, 5, "ok", ErrorKind.BAD_REQUEST),
            (self.phone_id, 6, "too high", ErrorKind.BAD_REQUEST),
            (self.phone_id, 3, "   ", ErrorKind.BAD_REQUEST),
            (str(ObjectId()), 5, "ok", ErrorKind.RESOURCE_NOT_FOUND),
        ]
        for phone_id, rating, comment, kind in cases:
            with self.subTest(rating=rating, comment=comment):
                with self.assertRaises(AppError) as ctx:
                    reviews.add_review(self.db, phone_id, rating, comment, self.u3)
                self.assertEqual(ctx.exception.kind, kind)

    # ---------- Toggling ----------

    def test_unrelated_user_cannot_toggle(self):
        with self.assertRaises(AppError) as ctx:
            reviews.toggle_review_visibility(self.db, self.phone_id, self.r1["id"], True, self.u3)
        self.assertEqual(ctx.exception.kind, ErrorKind.FORBIDDEN)
        self.assertFalse(self.stored()["is_hidden"])

    def test_author_and_seller_can_toggle(self):
        for actor in (self.u1, self.u2):
            with self.subTest(actor=actor.email):
                hidden = reviews.toggle_review_visibility(self.db, self.phone_id, self.r1["id"], True, actor)
                self.assertTrue(hidden["is_hidden"])
                self.assertTrue(self.stored()["is_hidden"])
                reviews.toggle_review_visibility(self.db, self.phone_id, self.r1["id"], False, actor)
                self.assertFalse(self.stored()["is_hidden"])

    def test_admin_override_is_audited(self):
        root = make_admin(self.db)
        reviews.toggle_review_visibility(self.db, self.phone_id, self.r1["id"], True, root)
        self.assertTrue(self.stored()["is_hidden"])
        reviews.delete_review(self.db, self.phone_id, self.r1["id"], root)

        logs = [(log["action"], log["target_id"], log["admin_user_id"]) for log in self.db["adminlog"].find().sort("_id", 1)]
        self.assertEqual(
            logs,
            [("HIDE_REVIEW", self.r1["id"], root.user_id), ("DELETE_REVIEW", self.r1["id"], root.user_id)],
        )
        phone = self.db["phone"].find_one({"_id": ObjectId(self.phone_id)})
        self.assertEqual(phone["reviews"], [])

    def test_author_and_seller_toggles_are_not_audited(self):
        reviews.toggle_review_visibility(self.db, self.phone_id, self.r1["id"], True, self.u1)
        reviews.toggle_review_visibility(self.db, self.phone_id, self.r1["id"], False, self.u2)
        self.assertEqual(self.db["adminlog"].count_documents({}), 0)

    def test_toggle_sets_rather_than_flips(self):
        reviews.toggle_review_visibility(self.db, self.phone_id, self.r1["id"], True, self.u1)
        reviews.toggle_review_visibility(self.db, self.phone_id, self.r1["id"], True, self.u1)
        self.assertTrue(self.stored()["is_hidden"])

    def test_toggle_changes_nothing_else(self):
        before = self.stored()
        reviews.toggle_review_visibility(self.db, self.phone_id, self.r1["id"], True, self.u2)
        after = self.stored()
        self.assertEqual({k: v for k, v in before.items() if k != "is_hidden"}, {k: v for k, v in after.items() if k != "is_hidden"})

    def test_toggle_only_touches_the_addressed_review(self):
        other = reviews.add_review(self.db, self.phone_id, 1, "Cracked screen", self.u3)
        reviews.toggle_review_visibility(self.db, self.phone_id, other["id"], True, self.u2)
        self.assertTrue(self.stored(other["id"])["is_hidden"])
        self.assertFalse(self.stored()["is_hidden"])

    def test_toggle_missing_review_or_phone(self):
        with self.assertRaises(AppError) as ctx:
            reviews.toggle_review_visibility(self.db, self.phone_id, "nope", True, self.u2)
        self.assertEqual(ctx.exception.kind, ErrorKind.RESOURCE_NOT_FOUND)
        with self.assertRaises(AppError) as ctx:
            reviews.toggle_review_visibility(self.db, str(ObjectId()), self.r1["id"], True, self.u2)
        self.assertEqual(ctx.exception.kind, ErrorKind.RESOURCE_NOT_FOUND)

    # ---------- Reading ----------

    def test_hidden_review_visibility_per_viewer(self):
        reviews.toggle_review_visibility(self.db, self.phone_id, self.r1["id"], True, self.u1)

        self.assertEqual(reviews.list_reviews(self.db, self.phone_id, self.u3.user_id)["total_items"], 0)
        self.assertEqual(reviews.list_reviews(self.db, self.phone_id, None)["total_items"], 0)
        self.assertEqual(reviews.list_reviews(self.db, self.phone_id, self.u1.user_id)["total_items"], 1)
        self.assertEqual(reviews.list_reviews(self.db, self.phone_id, self.u2.user_id)["total_items"], 1)

    def test_detail_shows_three_newest_visible_reviews(self):
        for i in range(4):
            reviews.add_review(self.db, self.phone_id, 5, f"Review {i}", make_user(self.db, f"Buyer {i}"))

        detail = reviews.get_phone_with_reviews(self.db, self.phone_id, None)

        self.assertEqual([r["comment"] for r in detail["reviews"]], ["Review 3", "Review 2", "Review 1"])
        self.assertEqual(detail["visible_review_count"], 5)
        self.assertEqual(detail["seller"]["name"], "Seller")

    def test_hidden_review_drops_out_of_average(self):
        reviews.add_review(self.db, self.phone_id, 2, "Meh", self.u3)
        self.assertEqual(reviews.get_phone_with_reviews(self.db, self.phone_id, None)["average_rating"], 3.0)
        reviews.toggle_review_visibility(self.db, self.phone_id, self.r1["id"], True, self.u2)
        self.assertEqual(reviews.get_phone_with_reviews(self.db, self.phone_id, None)["average_rating"], 2.0)

    def test_seller_feed_includes_hidden_reviews(self):
        reviews.toggle_review_visibility(self.db, self.phone_id, self.r1["id"], True, self.u1)
        feed = reviews.reviews_for_seller(self.db, self.u2.user_id)
        self.assertEqual(len(feed), 1)
        self.assertTrue(feed[0]["is_hidden"])
        self.assertEqual(feed[0]["phone"]["id"], self.phone_id)

    # ---------- Deleting ----------

    def test_only_author_deletes(self):
        with self.assertRaises(AppError) as ctx:
            reviews.delete_review(self.db, self.phone_id, self.r1["id"], self.u2)
        self.assertEqual(ctx.exception.kind, ErrorKind.FORBIDDEN)

        reviews.delete_review(self.db, self.phone_id, self.r1["id"], self.u1)
        phone = self.db["phone"].find_one({"_id": ObjectId(self.phone_id)})
        self.assertEqual(phone["reviews"], [])


if __name__ == "__main__":
    unittest.main()
