"""
Tests for relation write helpers.

Descriptors hold their owner by weak reference, so every test keeps
the owning entity in a local for as long as the descriptor is used.

Covers:
- BelongsToMany attach / detach / sync / toggle / update_existing_pivot
- Id forms: scalars, lists, entities and key -> attributes mappings
- Cached relation invalidation after pivot writes
- DetachedRelationFault for unsaved or collected owners
- HasMany / HasOne create, first_or_create, update_or_create
- BelongsTo associate / dissociate
"""

import gc

import pytest

from quarry import QueryBuilder
from quarry.faults import DetachedRelationFault

from tests.blog import Comment, Post, Tag, User


def pivot_rows(db, post_id):
    """{tag_id: role} for one post, read straight from the pivot table."""
    return QueryBuilder(db, "posts_tags").where("post_id", post_id).pluck("role", "tag_id")


def ids_of(entities):
    return [entity.get("id") for entity in entities]


# ============================================================================
# BelongsToMany
# ============================================================================


class TestAttachDetach:

    def test_attach_scalar_list_and_entity(self, blog):
        post = Post.find(4)
        assert post.tags().attach(1) == 1
        assert post.tags().attach([2, 3]) == 2
        assert post.tags().attach(Tag.find(5)) == 1
        assert sorted(pivot_rows(blog, 4)) == [1, 2, 3, 5]

    def test_attach_with_shared_and_per_key_attributes(self, blog):
        post = Post.find(3)
        assert post.tags().attach({1: {"role": "primary"}, 4: None}, {"role": "secondary"}) == 2
        assert pivot_rows(blog, 3) == {1: "primary", 2: "primary", 4: "secondary"}

    def test_attach_fills_missing_columns_with_null(self, blog):
        post = Post.find(4)
        post.tags().attach({1: {"role": "lead"}, 2: {}})
        assert pivot_rows(blog, 4) == {1: "lead", 2: None}
        inserts = [sql for sql in blog.statements if sql.startswith("INSERT")]
        assert len(inserts) == 1

    def test_attach_nothing(self, blog):
        post = Post.find(4)
        assert post.tags().attach([]) == 0

    def test_detach_some(self, blog):
        post = Post.find(2)
        assert post.tags().detach([4]) == 1
        assert pivot_rows(blog, 2) == {3: None}

    def test_detach_all(self, blog):
        post = Post.find(1)
        assert post.tags().detach() == 2
        assert pivot_rows(blog, 1) == {}
        assert pivot_rows(blog, 2) == {3: None, 4: None}

    def test_detach_empty_list_deletes_nothing(self, blog):
        post = Post.find(1)
        assert post.tags().detach([]) == 0
        assert len(pivot_rows(blog, 1)) == 2

    def test_update_existing_pivot(self, blog):
        post = Post.find(1)
        assert post.tags().update_existing_pivot(2, {"role": "secondary"})
        assert pivot_rows(blog, 1) == {1: "primary", 2: "secondary"}

    def test_attached_ids(self, blog):
        post = Post.find(2)
        assert sorted(post.tags().attached_ids()) == [3, 4]


class TestSync:

    def test_sync_reports_changes(self, blog):
        post = Post.find(2)
        changes = post.tags().sync([2, 3, 5])
        assert changes == {"attached": [2, 5], "detached": [4], "updated": []}
        assert sorted(pivot_rows(blog, 2)) == [2, 3, 5]

    def test_sync_compares_keys_as_strings(self, blog):
        post = Post.find(2)
        changes = post.tags().sync(["3", "4"])
        assert changes == {"attached": [], "detached": [], "updated": []}

    def test_sync_with_attributes_updates_existing_rows(self, blog):
        post = Post.find(1)
        changes = post.tags().sync({1: {"role": "lead"}, 3: {"role": "new"}})
        assert changes == {"attached": [3], "detached": [2], "updated": [1]}
        assert pivot_rows(blog, 1) == {1: "lead", 3: "new"}

    def test_sync_to_nothing_detaches_everything(self, blog):
        post = Post.find(1)
        changes = post.tags().sync([])
        assert sorted(changes["detached"]) == [1, 2]
        assert pivot_rows(blog, 1) == {}

    def test_sync_without_detaching(self, blog):
        post = Post.find(2)
        changes = post.tags().sync_without_detaching([1, 3])
        assert changes == {"attached": [1], "detached": [], "updated": []}
        assert sorted(pivot_rows(blog, 2)) == [1, 3, 4]

    def test_toggle(self, blog):
        post = Post.find(2)
        changes = post.tags().toggle([3, 1])
        assert changes == {"attached": [1], "detached": [3]}
        assert sorted(pivot_rows(blog, 2)) == [1, 4]

    def test_sync_forgets_the_cached_relation(self, blog):
        post = Post.find(2)
        assert len(post.related("tags")) == 2
        post.tags().sync([1])
        assert not post.relation_loaded("tags")
        assert [tag.get("name") for tag in post.related("tags")] == ["python"]


class TestDetachedOwners:

    def test_unsaved_owner(self, blog):
        draft = Post({"title": "draft"})
        with pytest.raises(DetachedRelationFault):
            draft.tags().attach([1])

    def test_collected_owner(self, blog):
        descriptor = Post.find(1).tags()
        gc.collect()
        with pytest.raises(DetachedRelationFault):
            descriptor.attach([3])
        assert len(pivot_rows(blog, 1)) == 2

    def test_unsaved_owner_cannot_create_children(self, blog):
        ghost = User({"name": "ghost"})
        with pytest.raises(DetachedRelationFault):
            ghost.posts().create({"title": "Nope"})


# ============================================================================
# HasMany / HasOne / BelongsTo writes
# ============================================================================


class TestHasManyWrites:

    def test_create_fills_the_foreign_key(self, blog):
        dave = User.find(4)
        post = dave.posts().create({"title": "Fifth"})
        assert post.exists
        assert post.get("id") == 5
        assert post.get("user_id") == 4
        assert Post.find(5).get("title") == "Fifth"

    def test_create_forgets_the_cached_relation(self, blog):
        dave = User.find(4)
        assert dave.related("posts") == []
        dave.posts().create({"title": "Fifth"})
        assert ids_of(dave.related("posts")) == [5]

    def test_relation_query_is_scoped_to_the_owner(self, blog):
        alice = User.find(1)
        assert alice.posts().query().order_by("id").pluck("title") == ["First", "Second"]

    def test_first_or_create_finds(self, blog):
        alice = User.find(1)
        post = alice.posts().first_or_create({"title": "First"})
        assert post.get("id") == 1
        assert Post.query().count() == 4

    def test_first_or_create_creates(self, blog):
        alice = User.find(1)
        post = alice.posts().first_or_create({"title": "Sixth"}, {"views": 7})
        assert post.get("user_id") == 1
        assert Post.find(post.get("id")).get("views") == 7

    def test_first_or_create_only_matches_the_owner(self, blog):
        bob = User.find(2)
        post = bob.posts().first_or_create({"title": "First"})
        assert post.get("id") == 5
        assert post.get("user_id") == 2

    def test_update_or_create_updates(self, blog):
        alice = User.find(1)
        post = alice.posts().update_or_create({"title": "First"}, {"views": 99})
        assert post.get("id") == 1
        assert Post.find(1).get("views") == 99

    def test_update_or_create_creates(self, blog):
        carol = User.find(3)
        carol.posts().update_or_create({"title": "Draft"}, {"views": 1})
        assert Post.query().where("user_id", 3).count() == 2

    def test_has_one_create(self, blog):
        bob = User.find(2)
        profile = bob.profile().create({"bio": "bob writes about sql"})
        assert profile.get("user_id") == 2
        assert User.find(2).related("profile").get("bio") == "bob writes about sql"


class TestBelongsToWrites:

    def test_associate_entity(self, blog):
        post = Post.find(3)
        carol = User.find(3)
        post.author().associate(carol)
        assert post.get("user_id") == 3
        assert post.related("author") is carol
        post.save()
        assert Post.find(3).get("user_id") == 3

    def test_associate_key_forgets_the_cache(self, blog):
        post = Post.find(3)
        post.related("author")
        post.author().associate(1)
        assert not post.relation_loaded("author")
        assert post.related("author").get("name") == "alice"

    def test_dissociate(self, blog):
        alice = User.find(1)
        blog.statements.clear()
        alice.country().dissociate()
        assert alice.get("country_id") is None
        assert alice.related("country") is None
        assert blog.statements == []

    def test_comment_belongs_to_post(self, blog):
        assert Comment.find(3).related("post").get("title") == "Third"
