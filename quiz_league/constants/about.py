"""Static metadata describing QuizLeague."""

APP_NAME = "QuizLeague"
APP_VERSION = "0.1"
APP_LICENSE = "MIT License"
APP_ABOUT_TEXT = (
    "QuizLeague runs scheduled trivia competitions: players register, start a timed "
    "attempt on an active quiz, submit their answers once, and climb the leaderboard."
)
