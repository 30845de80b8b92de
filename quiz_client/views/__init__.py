"""
Views package - one controller per client screen.
"""
from quiz_client.views.base_view import BaseView
from quiz_client.views.final_view import FinalView
from quiz_client.views.lobby_view import LobbyView
from quiz_client.views.question_view import QuestionView

__all__ = ["BaseView", "FinalView", "LobbyView", "QuestionView"]
