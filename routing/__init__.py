"""
Routing — the dispatch engine.

Quick start:
  from routing import Router
  bot = Router()
  bot.use("/start", lambda req, res, post_back: res.text("Hi"))
"""
from routing.blocks import Blocks, UnknownBlockError
from routing.paths import action_matches, make_absolute, normalize
from routing.postback import PostBack
from routing.reducers import BREAK, CONTINUE, END, ExitSignal
from routing.resolver import ResolvedAction, parse_action_payload, resolve
from routing.router import Route, Router
from routing.wrapper import ReducerWrapper

__all__ = [
    "Router", "Route", "ReducerWrapper", "PostBack", "Blocks", "UnknownBlockError",
    "CONTINUE", "BREAK", "END", "ExitSignal",
    "resolve", "ResolvedAction", "parse_action_payload",
    "normalize", "make_absolute", "action_matches",
]
