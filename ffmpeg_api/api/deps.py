from typing import Annotated

from fastapi import Depends, Request

from ffmpeg_api.config import Settings
from ffmpeg_api.middleware.request_context import RequestContext, get_request_context
from ffmpeg_api.services.dispatcher import Dispatcher
from ffmpeg_api.services.ffmpeg_runner import FFmpegRunner


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_dispatcher(request: Request) -> Dispatcher:
    return request.app.state.dispatcher


def get_runner(request: Request) -> FFmpegRunner:
    return request.app.state.runner


AppSettings = Annotated[Settings, Depends(get_app_settings)]
DispatcherDep = Annotated[Dispatcher, Depends(get_dispatcher)]
RunnerDep = Annotated[FFmpegRunner, Depends(get_runner)]
Context = Annotated[RequestContext, Depends(get_request_context)]
