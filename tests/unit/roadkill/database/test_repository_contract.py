"""Behaviour every repository backend must share, run against SQLite and the in-memory store."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from roadkill.core.utils import verify_password
from roadkill.database import (
    SITE_SETTINGS_ID,
    DataIntegrityError,
    DocumentNotFoundError,
    DuplicateInsertError,
    Page,
    PageContent,
    SiteConfigurationEntity,
    SiteSettings,
    User,
)

EDITED_ON = datetime(2024, 5, 2, 8, 0, tzinfo=timezone.utc)


class TestUserOperations:
    def test_save_then_get_by_id_returns_equal_user(self, repository, make_user):
        user = make_user(firstname="Alice", lastname="Liddell", is_editor=True)
        saved = repository.save_or_update(user)

        fetched = repository.get_user_by_id(user.id)
        assert saved == user
        assert fetched == user
        assert fetched.model_dump() == user.model_dump()

    def test_save_or_update_is_idempotent(self, repository, make_user):
        user = make_user(is_editor=True)
        repository.save_or_update(user)
        repository.save_or_update(user)

        assert len(repository.find_all_editors()) == 1

    def test_save_or_update_replaces_existing_row(self, repository, make_user):
        user = make_user()
        repository.save_or_update_user(user)

        user.firstname = "Changed"
        user.is_admin = True
        returned = repository.save_or_update_user(user)

        assert returned.firstname == "Changed"
        fetched = repository.get_user_by_id(user.id)
        assert fetched.firstname == "Changed"
        assert fetched.is_admin is True

    def test_get_user_by_id_missing_returns_none(self, repository):
        assert repository.get_user_by_id(uuid4()) is None

    def test_get_user_by_id_with_activation_filter(self, repository, make_user):
        user = make_user(is_activated=True)
        repository.save_or_update(user)

        assert repository.get_user_by_id(user.id, is_activated=True) == user
        assert repository.get_user_by_id(user.id, is_activated=False) is None
        assert repository.get_user_by_id(user.id, is_activated=None) == user

    def test_get_admin_and_editor_by_id(self, repository, make_user):
        admin = make_user("admin", is_admin=True)
        editor = make_user("editor", is_editor=True)
        repository.save_or_update(admin)
        repository.save_or_update(editor)

        assert repository.get_admin_by_id(admin.id) == admin
        assert repository.get_admin_by_id(editor.id) is None
        assert repository.get_editor_by_id(editor.id) == editor
        assert repository.get_editor_by_id(admin.id) is None
        assert repository.get_admin_by_id(uuid4()) is None

    def test_get_user_by_username(self, repository, make_user):
        user = make_user("alice")
        repository.save_or_update(user)

        assert repository.get_user_by_username("alice") == user
        assert repository.get_user_by_username("bob") is None

    def test_get_user_by_email_with_activation_filter(self, repository, make_user):
        user = make_user("alice", is_activated=False)
        repository.save_or_update(user)

        assert repository.get_user_by_email("alice@example.com") == user
        assert repository.get_user_by_email("alice@example.com", is_activated=False) == user
        assert repository.get_user_by_email("alice@example.com", is_activated=True) is None
        assert repository.get_user_by_email("nobody@example.com") is None

    def test_get_user_by_username_or_email(self, repository, make_user):
        alice = make_user("alice", email="alice@x.com")
        repository.save_or_update(alice)

        assert repository.get_user_by_username_or_email("alice", "nomatch@x.com") == alice
        assert repository.get_user_by_username_or_email("nomatch", "alice@x.com") == alice
        assert repository.get_user_by_username_or_email("nomatch", "nomatch@x.com") is None

    def test_username_match_wins_over_email_match(self, repository, make_user):
        alice = make_user("alice", email="alice@x.com")
        bob = make_user("bob", email="bob@x.com")
        repository.save_or_update(alice)
        repository.save_or_update(bob)

        assert repository.get_user_by_username_or_email("bob", "alice@x.com") == bob

    def test_activation_key_only_matches_unactivated_users(self, repository, make_user):
        user = make_user(activation_key="key-123", is_activated=False)
        repository.save_or_update(user)
        assert repository.get_user_by_activation_key("key-123") == user

        user.is_activated = True
        repository.save_or_update(user)
        assert repository.get_user_by_activation_key("key-123") is None

    def test_activation_key_unique_while_unconsumed(self, repository, make_user):
        repository.save_or_update(make_user("alice", activation_key="shared", is_activated=False))
        with pytest.raises(DuplicateInsertError):
            repository.save_or_update(make_user("bob", activation_key="shared", is_activated=False))

    def test_consumed_activation_key_can_be_reused(self, repository, make_user):
        repository.save_or_update(make_user("alice", activation_key="shared", is_activated=True))
        bob = make_user("bob", activation_key="shared", is_activated=False)
        repository.save_or_update(bob)

        assert repository.get_user_by_activation_key("shared") == bob

    def test_users_without_activation_key_do_not_collide(self, repository, make_user):
        repository.save_or_update(make_user("alice"))
        repository.save_or_update(make_user("bob"))

        assert repository.get_user_by_username("bob") is not None

    def test_get_user_by_password_reset_key(self, repository, make_user):
        user = make_user(password_reset_key="reset-1")
        repository.save_or_update(user)

        assert repository.get_user_by_password_reset_key("reset-1") == user
        assert repository.get_user_by_password_reset_key("reset-2") is None

    def test_find_all_editors_and_admins(self, repository, make_user):
        both = make_user("both", is_admin=True, is_editor=True)
        admin = make_user("admin", is_admin=True)
        editor = make_user("editor", is_editor=True)
        plain = make_user("plain")
        for user in (both, admin, editor, plain):
            repository.save_or_update(user)

        assert set(repository.find_all_admins()) == {both, admin}
        assert set(repository.find_all_editors()) == {both, editor}

    def test_same_email_is_rejected(self, repository, make_user):
        repository.save_or_update(make_user("alice", email="shared@x.com"))
        with pytest.raises(DuplicateInsertError) as exc_info:
            repository.save_or_update(make_user("bob", email="shared@x.com"))

        assert exc_info.value.operation == "save_or_update"
        assert exc_info.value.entity_type == "User"
        assert repository.get_user_by_username("bob") is None

    def test_same_username_is_rejected(self, repository, make_user):
        repository.save_or_update(make_user("alice", email="one@x.com"))
        with pytest.raises(DuplicateInsertError):
            repository.save_or_update(make_user("alice", email="two@x.com"))

    def test_delete_user(self, repository, make_user):
        user = make_user()
        repository.save_or_update(user)

        repository.delete(user)
        assert repository.get_user_by_id(user.id) is None
        # Deleting an absent entity is a no-op
        repository.delete(user)
        repository.delete_user(user)

    def test_delete_all_users(self, repository, make_user):
        repository.save_or_update(make_user("alice", is_editor=True))
        repository.save_or_update(make_user("bob", is_editor=True))

        repository.delete_all_users()
        assert repository.find_all_editors() == []

    def test_add_admin_user(self, repository):
        admin = repository.add_admin_user("admin@example.com", "admin", "s3cret!")

        fetched = repository.get_user_by_username("admin")
        assert fetched == admin
        assert fetched.is_admin and fetched.is_editor and fetched.is_activated
        assert fetched.email == "admin@example.com"
        assert fetched.salt
        assert fetched.password != "s3cret!"
        assert verify_password("s3cret!", fetched.password, fetched.salt)

    def test_add_admin_user_does_not_log_password(self, repository, caplog):
        repository.add_admin_user("admin@example.com", "admin", "do-not-log-me")
        assert "Adding admin user 'admin'" in caplog.text
        assert "do-not-log-me" not in caplog.text


class TestPageOperations:
    def test_add_new_page_assigns_ids(self, repository, make_page):
        first = make_page("First")
        second = make_page("Second")

        content = repository.add_new_page(first, "first text", "admin", EDITED_ON)
        repository.add_new_page(second, "second text", "admin", EDITED_ON)

        assert first.id == 1
        assert second.id == 2
        assert content.page_id == 1
        assert content.version_number == 1
        assert content.text == "first text"
        assert content.edited_on == EDITED_ON
        assert repository.get_page_by_id(1).title == "First"

    def test_add_new_page_keeps_explicit_id(self, repository, make_page):
        page = make_page(id=42)
        repository.add_new_page(page, "text", "admin", EDITED_ON)

        assert repository.get_page_by_id(42) == page
        next_page = make_page("Next")
        repository.add_new_page(next_page, "text", "admin", EDITED_ON)
        assert next_page.id == 43

    def test_add_new_page_with_taken_id_changes_nothing(self, repository, make_page):
        original = make_page("Original", id=5)
        repository.add_new_page(original, "original text", "admin", EDITED_ON)

        with pytest.raises(DuplicateInsertError) as exc_info:
            repository.add_new_page(make_page("Intruder", id=5), "other text", "mallory", EDITED_ON)

        assert exc_info.value.operation == "add_new_page"
        assert exc_info.value.key == 5
        assert repository.get_page_by_id(5).title == "Original"
        assert repository.get_page_by_id(5).created_by == "admin"
        assert [c.text for c in repository.find_page_contents_by_page_id(5)] == ["original text"]

    def test_page_round_trip_keeps_fields(self, repository, make_page):
        page = make_page("Tagged", tags=["wiki", "Help"], is_locked=True)
        repository.add_new_page(page, "text", "admin", EDITED_ON)

        fetched = repository.get_page_by_id(page.id)
        assert fetched.model_dump() == page.model_dump()
        assert fetched.created_on.tzinfo is not None

    def test_get_page_by_id_missing(self, repository):
        assert repository.get_page_by_id(999) is None

    def test_add_new_page_content_version(self, repository, make_page):
        page = make_page()
        repository.add_new_page(page, "v1", "admin", EDITED_ON)

        second = repository.add_new_page_content_version(page, "v2", "bob", EDITED_ON + timedelta(hours=1))
        third = repository.add_new_page_content_version(page, "v3", "carol", EDITED_ON + timedelta(hours=2))

        assert second.version_number == 2
        assert third.version_number == 3
        assert repository.get_latest_page_content(page.id) == third
        assert [c.version_number for c in repository.find_page_contents_by_page_id(page.id)] == [1, 2, 3]

    def test_add_new_page_content_version_with_explicit_version(self, repository, make_page):
        page = make_page()
        repository.add_new_page(page, "v1", "admin", EDITED_ON)

        content = repository.add_new_page_content_version(page, "v10", "admin", EDITED_ON, version=10)
        assert content.version_number == 10
        assert repository.get_latest_page_content(page.id).text == "v10"

    def test_add_new_page_content_version_for_missing_page(self, repository, make_page):
        with pytest.raises(DocumentNotFoundError) as exc_info:
            repository.add_new_page_content_version(make_page(id=77), "text", "admin", EDITED_ON)
        assert exc_info.value.key == 77
        assert exc_info.value.entity_type == "Page"

    def test_duplicate_version_number_is_rejected(self, repository, make_page):
        page = make_page()
        repository.add_new_page(page, "v1", "admin", EDITED_ON)
        with pytest.raises(DuplicateInsertError):
            repository.add_new_page_content_version(page, "again", "admin", EDITED_ON, version=1)

    def test_get_page_content_by_id_and_version(self, repository, make_page):
        page = make_page()
        first = repository.add_new_page(page, "v1", "admin", EDITED_ON)
        second = repository.add_new_page_content_version(page, "v2", "admin", EDITED_ON)

        assert repository.get_page_content_by_id(first.id) == first
        assert repository.get_page_content_by_page_id_and_version_number(page.id, 2) == second
        assert repository.get_page_content_by_page_id_and_version_number(page.id, 3) is None
        assert repository.get_page_content_by_id(uuid4()) is None

    def test_get_latest_page_content_for_page_without_content(self, repository):
        assert repository.get_latest_page_content(5) is None

    def test_get_page_by_title_is_case_insensitive(self, repository, make_page):
        page = make_page("Main Page")
        repository.add_new_page(page, "text", "admin", EDITED_ON)

        assert repository.get_page_by_title("main page") == page
        assert repository.get_page_by_title("MAIN PAGE") == page
        assert repository.get_page_by_title("Main") is None

    def test_find_pages_by_author(self, repository, make_page):
        alice_page = make_page("A", created_by="alice", modified_by="bob")
        bob_page = make_page("B", created_by="bob")
        repository.add_new_page(alice_page, "a", "alice", EDITED_ON)
        repository.add_new_page(bob_page, "b", "bob", EDITED_ON)

        assert repository.find_pages_created_by("alice") == [alice_page]
        assert repository.find_pages_modified_by("bob") == [alice_page, bob_page]
        assert repository.find_pages_created_by("nobody") == []

    def test_find_pages_containing_tag_is_case_insensitive(self, repository, make_page):
        tagged = make_page("Tagged", tags=["Python", "wiki"])
        other = make_page("Other", tags=["wikipedia"])
        repository.add_new_page(tagged, "t", "admin", EDITED_ON)
        repository.add_new_page(other, "o", "admin", EDITED_ON)

        assert repository.find_pages_containing_tag("python") == [tagged]
        assert repository.find_pages_containing_tag("WIKI") == [tagged]
        assert repository.find_pages_containing_tag("missing") == []

    def test_all_tags_are_distinct_in_first_seen_order(self, repository, make_page):
        repository.add_new_page(make_page("One", tags=["b", "a"]), "1", "admin", EDITED_ON)
        repository.add_new_page(make_page("Two", tags=["A", "c", "b"]), "2", "admin", EDITED_ON)

        assert repository.all_tags() == ["b", "a", "c"]

    def test_all_pages_and_contents(self, repository, make_page):
        first = make_page("One")
        second = make_page("Two")
        repository.add_new_page(first, "1", "admin", EDITED_ON)
        repository.add_new_page(second, "2", "bob", EDITED_ON)
        repository.add_new_page_content_version(first, "1b", "bob", EDITED_ON)

        assert repository.all_pages() == [first, second]
        contents = repository.all_page_contents()
        assert [(c.page_id, c.version_number) for c in contents] == [(1, 1), (1, 2), (2, 1)]
        assert [(c.page_id, c.version_number) for c in repository.find_page_contents_edited_by("bob")] == [
            (1, 2),
            (2, 1),
        ]

    def test_save_or_update_page_and_content(self, repository, make_page):
        page = make_page("Draft")
        content = repository.add_new_page(page, "draft", "admin", EDITED_ON)

        page.title = "Published"
        page.is_locked = True
        repository.save_or_update_page(page)
        content.text = "final"
        repository.update_page_content(content)

        assert repository.get_page_by_id(page.id).title == "Published"
        assert repository.get_page_by_id(page.id).is_locked is True
        assert repository.get_page_content_by_id(content.id).text == "final"
        assert len(repository.find_page_contents_by_page_id(page.id)) == 1

    def test_delete_page_removes_contents(self, repository, make_page):
        doomed = make_page("Doomed")
        kept = make_page("Kept")
        repository.add_new_page(doomed, "1", "admin", EDITED_ON)
        repository.add_new_page_content_version(doomed, "2", "admin", EDITED_ON)
        repository.add_new_page(kept, "k", "admin", EDITED_ON)

        repository.delete_page(doomed)

        assert repository.get_page_by_id(doomed.id) is None
        assert repository.find_page_contents_by_page_id(doomed.id) == []
        assert repository.get_page_by_id(kept.id) == kept
        assert len(repository.find_page_contents_by_page_id(kept.id)) == 1

    def test_delete_page_content(self, repository, make_page):
        page = make_page()
        repository.add_new_page(page, "1", "admin", EDITED_ON)
        second = repository.add_new_page_content_version(page, "2", "admin", EDITED_ON)

        repository.delete_page_content(second)
        assert repository.get_latest_page_content(page.id).version_number == 1
        repository.delete_page_content(second)

    def test_delete_all_pages(self, repository, make_page):
        repository.add_new_page(make_page("One"), "1", "admin", EDITED_ON)
        repository.add_new_page(make_page("Two"), "2", "admin", EDITED_ON)

        repository.delete_all_pages()
        assert repository.all_pages() == []
        assert repository.all_page_contents() == []


class TestSiteSettings:
    def test_defaults_when_nothing_stored(self, repository):
        assert repository.get_site_settings() == SiteSettings()

    def test_save_and_load(self, repository):
        settings = SiteSettings(site_name="Team wiki", theme="Mediawiki", allow_user_signup=True)
        repository.save_site_settings(settings)

        assert repository.get_site_settings() == settings

    def test_save_twice_keeps_a_single_row(self, repository):
        repository.save_site_settings(SiteSettings(site_name="First"))
        repository.save_site_settings(SiteSettings(site_name="Second"))

        entity = repository.get_by_id(SiteConfigurationEntity, SITE_SETTINGS_ID)
        assert entity.id == SITE_SETTINGS_ID
        assert entity.version
        assert repository.get_site_settings().site_name == "Second"

    def test_unreadable_settings_raise_data_integrity_error(self, repository, caplog):
        repository.save_or_update(SiteConfigurationEntity(id=SITE_SETTINGS_ID, version="2.0", content="{not json"))

        with pytest.raises(DataIntegrityError) as exc_info:
            repository.get_site_settings()

        assert exc_info.value.operation == "get_site_settings"
        assert exc_info.value.key == SITE_SETTINGS_ID
        assert "are unreadable" in caplog.text


class TestGenericOperations:
    def test_get_by_id(self, repository, make_user):
        user = make_user()
        repository.save_or_update(user)

        assert repository.get_by_id(User, user.id) == user
        assert repository.get_by_id(User, uuid4()) is None

    def test_delete_all(self, repository, make_page):
        repository.add_new_page(make_page(), "text", "admin", EDITED_ON)

        repository.delete_all(PageContent)
        assert repository.all_page_contents() == []
        assert len(repository.all_pages()) == 1

        repository.delete_all(Page)
        assert repository.all_pages() == []

    def test_delete_page_entity_removes_its_contents(self, repository, make_page):
        page = make_page()
        repository.add_new_page(page, "1", "admin", EDITED_ON)
        repository.add_new_page_content_version(page, "2", "admin", EDITED_ON)

        repository.delete(page)

        assert repository.get_page_by_id(page.id) is None
        assert repository.all_page_contents() == []

    def test_delete_all_pages_entity_type_removes_contents(self, repository, make_page):
        repository.add_new_page(make_page("One"), "1", "admin", EDITED_ON)

        repository.delete_all(Page)

        assert repository.all_pages() == []
        assert repository.all_page_contents() == []

    def test_wipe_removes_everything(self, repository, make_user, make_page):
        user = make_user(is_admin=True, is_editor=True, activation_key="k")
        repository.save_or_update(user)
        page = make_page()
        content = repository.add_new_page(page, "text", "admin", EDITED_ON)
        repository.save_site_settings(SiteSettings(site_name="Wiped"))

        repository.wipe()

        assert repository.get_user_by_id(user.id) is None
        assert repository.get_user_by_activation_key("k") is None
        assert repository.find_all_admins() == []
        assert repository.find_all_editors() == []
        assert repository.all_pages() == []
        assert repository.all_page_contents() == []
        assert repository.get_page_content_by_id(content.id) is None
        assert repository.get_site_settings() == SiteSettings()

    def test_store_is_usable_after_wipe(self, repository, make_user):
        repository.wipe()
        user = make_user()
        repository.save_or_update(user)

        assert repository.get_user_by_id(user.id) == user

    def test_repository_is_a_context_manager(self, repository):
        with repository as repo:
            assert repo is repository

    def test_writes_are_logged(self, repository, make_user, caplog):
        user = make_user()
        repository.save_or_update(user)
        assert f"Saved User {user.id}." in caplog.text
