from groupchat.core.errors import ErrorKind
from groupchat.models import GroupRole
from groupchat.services.group_service import GroupService
from groupchat.services.membership import MembershipAuthority
from groupchat.services.message_service import MessageService


async def test_create_public_group(db, hub, make_user):
    owner = await make_user("owner")

    result = await GroupService(db, hub).create("General", "chit-chat", False, owner)

    assert result.is_success
    assert result.data.member_count == 1
    assert result.data.invite_code is None
    assert await MembershipAuthority(db).get_role(owner, result.data.id) == GroupRole.ADMIN


async def test_create_private_group_mints_invite_code(db, hub, make_user):
    owner = await make_user("owner")

    result = await GroupService(db, hub).create("Secret", None, True, owner)

    code = result.data.invite_code
    assert code is not None
    assert len(code) == 8
    assert code.isalnum() and code.upper() == code


async def test_create_for_unknown_user_fails(db, hub):
    result = await GroupService(db, hub).create("Ghost town", None, False, 999)
    assert result.kind == ErrorKind.NOT_FOUND


async def test_join_public_group_by_id(db, hub, make_user, make_group, join):
    owner = await make_user("owner")
    member = await make_user("member")
    group_id, _ = await make_group(owner)

    result = await join(member, group_id=group_id)

    assert result.is_success
    assert await MembershipAuthority(db).get_role(member, group_id) == GroupRole.MEMBER


async def test_join_twice_conflicts(db, hub, make_user, make_group, join):
    owner = await make_user("owner")
    member = await make_user("member")
    group_id, _ = await make_group(owner)
    await join(member, group_id=group_id)

    result = await join(member, group_id=group_id)

    assert result.kind == ErrorKind.CONFLICT
    assert result.reason == "already_member"
    assert result.message == "Already a member of this group"


async def test_join_private_by_invite_code_is_approved(db, hub, make_user, make_group, join):
    owner = await make_user("owner")
    guest = await make_user("guest")
    group_id, code = await make_group(owner, is_private=True)

    await MessageService(db, hub).send(group_id, owner, "welcome")
    result = await join(guest, invite_code=code)

    assert result.is_success
    assert await MembershipAuthority(db).is_member(guest, group_id)
    history = await MessageService(db, hub).list_by_group(group_id, guest)
    assert history.is_success
    assert [m.content for m in history.data.messages] == ["welcome"]


async def test_join_private_by_id_is_pending_until_approved(db, hub, make_user, make_group, join):
    owner = await make_user("owner")
    applicant = await make_user("applicant")
    group_id, _ = await make_group(owner, is_private=True)
    service = GroupService(db, hub)

    first = await join(applicant, group_id=group_id)
    again = await join(applicant, group_id=group_id)

    assert first.is_success
    assert not await MembershipAuthority(db).is_member(applicant, group_id)
    assert again.kind == ErrorKind.CONFLICT
    assert again.message == "Join request already pending approval"

    # Pending members cannot post
    assert (await MessageService(db, hub).send(group_id, applicant, "hi")).kind == ErrorKind.FORBIDDEN

    pending = await service.list_members(group_id, owner, include_pending=True)
    assert applicant in [m.user_id for m in pending.data.items]

    assert (await service.approve_member(group_id, applicant, owner)).is_success
    assert await MembershipAuthority(db).is_member(applicant, group_id)


async def test_join_needs_exactly_one_locator(db, hub, make_user, make_group, join):
    owner = await make_user("owner")
    group_id, code = await make_group(owner, is_private=True)
    guest = await make_user("guest")

    assert (await join(guest)).kind == ErrorKind.VALIDATION
    assert (await join(guest, group_id=group_id, invite_code=code)).kind == ErrorKind.VALIDATION
    assert (await join(guest, invite_code="NOPE0000")).kind == ErrorKind.NOT_FOUND
    assert (await join(guest, group_id=424242)).kind == ErrorKind.NOT_FOUND


async def test_leave_and_rejoin_reactivates_membership(db, hub, make_user, make_group, join):
    owner = await make_user("owner")
    member = await make_user("member")
    group_id, _ = await make_group(owner)
    service = GroupService(db, hub)
    await join(member, group_id=group_id)

    assert (await service.leave(group_id, member)).is_success
    assert not await MembershipAuthority(db).is_member(member, group_id)

    assert (await join(member, group_id=group_id)).is_success
    assert await MembershipAuthority(db).get_role(member, group_id) == GroupRole.MEMBER


async def test_leave_evicts_live_connections(db, hub, make_user, make_group, join, connect):
    owner = await make_user("owner")
    member = await make_user("member")
    group_id, _ = await make_group(owner)
    await join(member, group_id=group_id)

    connection = await connect(member)
    await hub.join_room(connection, group_id)
    await GroupService(db, hub).leave(group_id, member)

    await MessageService(db, hub).send(group_id, owner, "after you left")
    assert connection.websocket.events("ReceiveMessage") == []


async def test_creator_cannot_leave(db, hub, make_user, make_group):
    owner = await make_user("owner")
    group_id, _ = await make_group(owner)

    result = await GroupService(db, hub).leave(group_id, owner)

    assert result.kind == ErrorKind.FORBIDDEN


async def test_moderator_removes_members_and_moderators_but_not_admins(db, hub, make_user, make_group, join):
    owner = await make_user("owner")
    admin = await make_user("admin")
    mod_a = await make_user("mod_a")
    mod_b = await make_user("mod_b")
    member = await make_user("member")
    group_id, _ = await make_group(owner)
    service = GroupService(db, hub)
    for user_id in (admin, mod_a, mod_b, member):
        await join(user_id, group_id=group_id)
    await service.update_role(group_id, admin, "Admin", owner)
    await service.update_role(group_id, mod_a, "Moderator", owner)
    await service.update_role(group_id, mod_b, "Moderator", owner)

    assert (await service.remove_member(group_id, admin, mod_a)).kind == ErrorKind.FORBIDDEN
    assert (await service.remove_member(group_id, owner, mod_a)).kind == ErrorKind.FORBIDDEN
    assert (await service.remove_member(group_id, member, mod_a)).is_success
    assert (await service.remove_member(group_id, mod_b, mod_a)).is_success

    authority = MembershipAuthority(db)
    assert not await authority.is_member(member, group_id)
    assert not await authority.is_member(mod_b, group_id)
    assert await authority.get_role(admin, group_id) == GroupRole.ADMIN


async def test_admin_removes_moderator(db, hub, make_user, make_group, join, connect):
    owner = await make_user("owner")
    moderator = await make_user("moderator")
    group_id, _ = await make_group(owner)
    service = GroupService(db, hub)
    await join(moderator, group_id=group_id)
    await service.update_role(group_id, moderator, "Moderator", owner)

    connection = await connect(moderator)
    await hub.join_room(connection, group_id)

    assert (await service.remove_member(group_id, moderator, owner)).is_success
    assert hub.get_room_connections(group_id) == []


async def test_banned_user_cannot_rejoin(db, hub, make_user, make_group, join):
    owner = await make_user("owner")
    troll = await make_user("troll")
    group_id, _ = await make_group(owner)
    service = GroupService(db, hub)
    await join(troll, group_id=group_id)

    assert (await service.remove_member(group_id, troll, owner, ban=True)).is_success
    result = await join(troll, group_id=group_id)

    assert result.kind == ErrorKind.FORBIDDEN
    assert result.reason == "banned"


async def test_update_role_rules(db, hub, make_user, make_group, join):
    owner = await make_user("owner")
    moderator = await make_user("moderator")
    member = await make_user("member")
    group_id, _ = await make_group(owner)
    service = GroupService(db, hub)
    await join(moderator, group_id=group_id)
    await join(member, group_id=group_id)
    await service.update_role(group_id, moderator, "Moderator", owner)

    assert (await service.update_role(group_id, member, "Overlord", owner)).kind == ErrorKind.VALIDATION
    assert (await service.update_role(group_id, member, "Moderator", moderator)).kind == ErrorKind.FORBIDDEN
    assert (await service.update_role(group_id, owner, "Member", owner)).kind == ErrorKind.FORBIDDEN
    assert (await service.update_role(group_id, member, "Admin", owner)).is_success
    assert await MembershipAuthority(db).get_role(member, group_id) == GroupRole.ADMIN


async def test_private_group_visibility(db, hub, make_user, make_group, join):
    owner = await make_user("owner")
    member = await make_user("member")
    stranger = await make_user("stranger")
    group_id, code = await make_group(owner, is_private=True)
    await join(member, invite_code=code)
    service = GroupService(db, hub)

    assert (await service.get(group_id, stranger)).kind == ErrorKind.FORBIDDEN
    assert (await service.get(group_id, member)).data.invite_code is None
    assert (await service.get(group_id, owner)).data.invite_code == code


async def test_update_privacy_toggles_invite_code(db, hub, make_user, make_group):
    owner = await make_user("owner")
    group_id, _ = await make_group(owner)
    service = GroupService(db, hub)

    made_private = await service.update(group_id, owner, is_private=True)
    made_public = await service.update(group_id, owner, is_private=False)

    assert made_private.data.invite_code is not None
    assert made_public.data.invite_code is None


async def test_generate_invite_code(db, hub, make_user, make_group):
    owner = await make_user("owner")
    public_id, _ = await make_group(owner)
    private_id, old_code = await make_group(owner, name="Secret", is_private=True)
    service = GroupService(db, hub)

    assert (await service.generate_invite_code(public_id, owner)).kind == ErrorKind.VALIDATION
    result = await service.generate_invite_code(private_id, owner)
    assert result.is_success
    assert result.data.invite_code != old_code


async def test_delete_group(db, hub, make_user, make_group, join, connect):
    owner = await make_user("owner")
    member = await make_user("member")
    group_id, _ = await make_group(owner)
    await join(member, group_id=group_id)
    service = GroupService(db, hub)
    connection = await connect(owner)
    await hub.join_room(connection, group_id)

    assert (await service.delete(group_id, member)).kind == ErrorKind.FORBIDDEN
    assert (await service.delete(group_id, owner)).is_success
    assert hub.get_room_connections(group_id) == []
    assert (await service.get(group_id, owner)).kind == ErrorKind.NOT_FOUND
    assert (await MessageService(db, hub).send(group_id, owner, "hello?")).kind == ErrorKind.FORBIDDEN


async def test_list_for_user_and_search(db, hub, make_user, make_group, join):
    owner = await make_user("owner")
    member = await make_user("member")
    public_id, _ = await make_group(owner, name="Python fans")
    await make_group(owner, name="Python secret", is_private=True)
    await join(member, group_id=public_id)
    service = GroupService(db, hub)

    mine = await service.list_for_user(owner)
    theirs = await service.list_for_user(member)
    found = await service.search_public("Python")

    assert mine.data.total_count == 2
    assert [g.id for g in theirs.data.items] == [public_id]
    assert [g.id for g in found.data.items] == [public_id]
    assert found.data.items[0].member_count == 2


async def test_list_members_pending_only_for_moderators(db, hub, make_user, make_group, join):
    owner = await make_user("owner")
    member = await make_user("member")
    group_id, code = await make_group(owner, is_private=True)
    await join(member, invite_code=code)

    result = await GroupService(db, hub).list_members(group_id, member, include_pending=True)

    assert result.kind == ErrorKind.FORBIDDEN
