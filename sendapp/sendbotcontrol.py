#!/usr/bin/env python3

from telegram import Update
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from sendapp.sendbotmodel import SendBotModel
from sendapp.sendbotview import JOIN_CALLBACK_DATA


class SendBotController:
    def __init__(self, model: SendBotModel, application: Application):
        self._model = model

        application.add_handler(CommandHandler("help", self._handle_help))
        application.add_handler(CommandHandler("send", self._handle_send))
        application.add_handler(CommandHandler("guess", self._handle_guess))
        application.add_handler(CommandHandler("kill", self._handle_kill))

        application.add_handler(
            CallbackQueryHandler(
                self._handle_join_game, pattern=f"^{JOIN_CALLBACK_DATA}$"
            )
        )
        application.add_handler(
            MessageHandler(
                filters.TEXT & ~filters.COMMAND,
                self._handle_text,
            )
        )

    async def _handle_help(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await self._model.help(update, context)

    async def _handle_send(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await self._model.send(update, context)

    async def _handle_guess(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await self._model.guess(update, context)

    async def _handle_kill(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await self._model.kill(update, context)

    async def _handle_join_game(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await self._model.join_game(update, context)

    async def _handle_text(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await self._model.moderate(update, context)
