from typing import Iterable

from pyteal import (
    App,
    Approve,
    Assert,
    BoxLen,
    BoxPut,
    Btoi,
    Bytes,
    Concat,
    Cond,
    Expr,
    Global,
    Int,
    Len,
    Mode,
    Not,
    OnComplete,
    Reject,
    ScratchVar,
    Seq,
    TealType,
    Txn,
    compileTeal,
)


def _candidate_key_from_arg(arg_index: int) -> Expr:
    return Concat(Bytes("cand_"), Txn.application_args[arg_index])


def _candidate_key_literal(candidate_id: int) -> Expr:
    key_bytes = b"cand_" + int(candidate_id).to_bytes(8, "big")
    return Bytes("base16", key_bytes.hex())


def _registration_box() -> Expr:
    return Concat(Bytes("reg_"), Txn.sender())


def _voter_box() -> Expr:
    return Concat(Bytes("voter_"), Txn.sender())


def build_approval_program(candidate_ids: Iterable[int] | None = None) -> Expr:
    """
    Election program backing AlgorandLedgerClient.

    Creation args: election id, title, start timestamp, end timestamp.
    Voters register once, then vote once; both are keyed by the sender.
    """
    configured_ids = list(candidate_ids or [])

    election_id_key = Bytes("election_id")
    title_key = Bytes("title")
    start_key = Bytes("start")
    deadline_key = Bytes("deadline")
    finalized_key = Bytes("finalized")
    admin_key = Bytes("admin")

    on_create = Seq(
        Assert(Txn.application_args.length() == Int(4)),
        App.globalPut(election_id_key, Txn.application_args[0]),
        App.globalPut(title_key, Txn.application_args[1]),
        App.globalPut(start_key, Btoi(Txn.application_args[2])),
        App.globalPut(deadline_key, Btoi(Txn.application_args[3])),
        App.globalPut(finalized_key, Int(0)),
        App.globalPut(admin_key, Txn.sender()),
        *[App.globalPut(_candidate_key_literal(cid), Int(0)) for cid in configured_ids],
        Approve(),
    )

    add_key = ScratchVar(TealType.bytes)
    add_exists = App.globalGetEx(Global.current_application_id(), add_key.load())
    add_candidate = Seq(
        Assert(Txn.application_args.length() == Int(2)),
        Assert(Txn.sender() == App.globalGet(admin_key)),
        Assert(App.globalGet(finalized_key) == Int(0)),
        Assert(Len(Txn.application_args[1]) == Int(8)),
        add_key.store(_candidate_key_from_arg(1)),
        add_exists,
        Assert(Not(add_exists.hasValue())),
        App.globalPut(add_key.load(), Int(0)),
        Approve(),
    )

    finalize = Seq(
        Assert(Txn.application_args.length() == Int(1)),
        Assert(Txn.sender() == App.globalGet(admin_key)),
        App.globalPut(finalized_key, Int(1)),
        Approve(),
    )

    registration_exists = BoxLen(_registration_box())
    register_voter = Seq(
        Assert(Txn.application_args.length() == Int(1)),
        Assert(App.globalGet(finalized_key) == Int(0)),
        Assert(Global.latest_timestamp() < App.globalGet(deadline_key)),
        registration_exists,
        Assert(Not(registration_exists.hasValue())),
        BoxPut(_registration_box(), Bytes("1")),
        Approve(),
    )

    vote_key = ScratchVar(TealType.bytes)
    vote_exists = App.globalGetEx(Global.current_application_id(), vote_key.load())
    voter_registered = BoxLen(_registration_box())
    voter_exists = BoxLen(_voter_box())
    vote = Seq(
        Assert(Txn.application_args.length() == Int(2)),
        Assert(Len(Txn.application_args[1]) == Int(8)),
        Assert(App.globalGet(finalized_key) == Int(0)),
        Assert(Global.latest_timestamp() >= App.globalGet(start_key)),
        Assert(Global.latest_timestamp() < App.globalGet(deadline_key)),
        voter_registered,
        Assert(voter_registered.hasValue()),
        voter_exists,
        Assert(Not(voter_exists.hasValue())),
        Assert(Btoi(Txn.application_args[1]) > Int(0)),
        vote_key.store(_candidate_key_from_arg(1)),
        vote_exists,
        Assert(vote_exists.hasValue()),
        App.globalPut(vote_key.load(), vote_exists.value() + Int(1)),
        BoxPut(_voter_box(), Txn.application_args[1]),
        Approve(),
    )

    return Cond(
        [Txn.application_id() == Int(0), on_create],
        [
            Txn.on_completion() == OnComplete.NoOp,
            Cond(
                [Txn.application_args[0] == Bytes("add_candidate"), add_candidate],
                [Txn.application_args[0] == Bytes("finalize"), finalize],
                [Txn.application_args[0] == Bytes("register_voter"), register_voter],
                [Txn.application_args[0] == Bytes("vote"), vote],
            ),
        ],
        [Txn.on_completion() == OnComplete.OptIn, Reject()],
        [Txn.on_completion() == OnComplete.CloseOut, Reject()],
        [Txn.on_completion() == OnComplete.UpdateApplication, Reject()],
        [Txn.on_completion() == OnComplete.DeleteApplication, Reject()],
    )


def build_clear_program() -> Expr:
    return Approve()


def compile_contract(candidate_ids: Iterable[int] | None = None) -> tuple[str, str]:
    approval = compileTeal(
        build_approval_program(candidate_ids),
        mode=Mode.Application,
        version=8,
    )
    clear = compileTeal(
        build_clear_program(),
        mode=Mode.Application,
        version=8,
    )
    return approval, clear
