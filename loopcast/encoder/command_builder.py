"""
Encoder command line construction.

build_encoder_invocation() is a pure function of its inputs. Three
independent toggles select the pipeline:

- hardware acceleration: VA-API decode/scale/encode vs. libx264
- scaling filter: scale inside a filter graph vs. pass-through
- background music: looped music track vs. the playlist's own audio

Bitrate, max-rate, buffer size and keyframe interval use the same formulas
on both codec paths.
"""

from typing import List, Optional

from loopcast.config import StreamerConfig

BASE_INPUT_ARGS = [
    "-avoid_negative_ts", "make_zero",
    "-fflags", "+discardcorrupt+genpts",
]

OUTPUT_ARGS = [
    "-max_muxing_queue_size", "4096",
    "-rw_timeout", "15000000",
    "-flvflags", "no_duration_filesize",
    "-rtmp_live", "live",
    "-f", "flv",
]

HW_VIDEO_CODEC = "h264_vaapi"
SW_VIDEO_CODEC = "libx264"


def video_filter(config: StreamerConfig, hwaccel: bool) -> str:
    """Scale filter expression for the selected pipeline."""
    if hwaccel:
        return f"scale_vaapi=w={config.width}:h={config.height}:format=nv12"
    return f"scale={config.width}:{config.height}:flags=lanczos"


def _hwaccel_input_args(config: StreamerConfig) -> List[str]:
    return [
        "-hwaccel", "vaapi",
        "-vaapi_device", config.vaapi_device,
        "-hwaccel_output_format", "vaapi",
        "-extra_hw_frames", "32",
        "-probesize", "50M",
        "-analyzeduration", "50M",
    ]


def _volume_is_unity(volume: float) -> bool:
    return abs(volume - 1.0) < 1e-9


def _audio_and_filter_args(
    config: StreamerConfig,
    hwaccel: bool,
    music_track: Optional[str],
    source_has_audio: bool,
) -> List[str]:
    use_filter = config.use_video_filter
    vf = f"[0:v]{video_filter(config, hwaccel)}[vout]"
    rate = str(config.audio_sample_rate)
    args: List[str] = []

    if music_track:
        args += ["-stream_loop", "-1", "-i", music_track]
        if _volume_is_unity(config.music_volume):
            if use_filter:
                args += ["-filter_complex", vf, "-map", "[vout]", "-map", "1:a"]
            else:
                args += ["-map", "0:v", "-map", "1:a"]
            args += ["-c:a", "copy"]
        else:
            volume = f"[1:a]volume={config.music_volume:g},asetpts=PTS-STARTPTS[aud]"
            if use_filter:
                args += ["-filter_complex", f"{vf};{volume}", "-map", "[vout]", "-map", "[aud]"]
            else:
                args += ["-filter_complex", volume, "-map", "0:v", "-map", "[aud]"]
            args += ["-c:a", "aac", "-ar", rate, "-b:a", config.audio_bitrate]
        # End the stream when the video playlist finishes
        args += ["-shortest"]
    elif source_has_audio:
        if use_filter:
            args += ["-filter_complex", vf, "-map", "[vout]", "-map", "0:a?"]
        else:
            args += ["-map", "0:v", "-map", "0:a?"]
        args += ["-c:a", "copy"]
    else:
        silence = f"anullsrc=r={rate}:cl=stereo"
        if use_filter:
            args += ["-filter_complex", f"{vf};{silence}[aud]", "-map", "[vout]", "-map", "[aud]"]
        else:
            args += ["-f", "lavfi", "-i", silence, "-map", "0:v", "-map", "1:a"]
        args += ["-c:a", "aac", "-ar", rate, "-ac", "2", "-b:a", config.audio_bitrate]
        # anullsrc never ends on its own
        args += ["-shortest"]
    return args


def _codec_args(config: StreamerConfig, hwaccel: bool) -> List[str]:
    fps = config.framerate_arg
    gop = str(config.gop_size)
    if hwaccel:
        return [
            "-c:v", HW_VIDEO_CODEC,
            "-profile:v", "high",
            "-compression_level", "1",
            "-quality", "1",
            "-aud", "1",
            "-sei", "timing+recovery_point",
            "-async_depth", "4",
            "-coder", "cabac",
            "-r", fps,
            "-fps_mode", "cfr",
            "-rc_mode", "CBR",
            "-b:v", config.video_bitrate,
            "-maxrate", config.video_bitrate,
            "-bufsize", config.bufsize,
            "-g", gop,
            "-keyint_min", gop,
        ]
    return [
        "-c:v", SW_VIDEO_CODEC,
        "-preset", "veryfast",
        "-tune", "zerolatency",
        "-profile:v", "high",
        "-r", fps,
        "-fps_mode", "cfr",
        "-b:v", config.video_bitrate,
        "-minrate", config.video_bitrate,
        "-maxrate", config.video_bitrate,
        "-bufsize", config.bufsize,
        "-g", gop,
        "-keyint_min", gop,
        "-sc_threshold", "0",
    ]


def build_encoder_invocation(
    config: StreamerConfig,
    playlist_path: str,
    music_track: Optional[str] = None,
    *,
    hwaccel: bool = False,
    source_has_audio: bool = True,
    ffmpeg_bin: str = "ffmpeg",
) -> List[str]:
    """
    Build the full ffmpeg argument list for one streaming run.

    Args:
        config: Active configuration
        playlist_path: Concat manifest to stream
        music_track: Looped background track, or None to keep the playlist's
            own audio
        hwaccel: Use the VA-API pipeline (caller checks device availability)
        source_has_audio: Whether the first playlist entry carries audio;
            ignored when a music track is given
        ffmpeg_bin: ffmpeg executable name or path

    Returns:
        Argument list, program name first
    """
    cmd = [
        ffmpeg_bin,
        "-hide_banner",
        "-nostdin",
        "-loglevel", config.effective_ffmpeg_log_level,
    ]
    cmd += BASE_INPUT_ARGS
    if hwaccel:
        cmd += _hwaccel_input_args(config)
    cmd += ["-re", "-f", "concat", "-safe", "0", "-i", playlist_path]
    cmd += _audio_and_filter_args(config, hwaccel, music_track, source_has_audio)
    cmd += _codec_args(config, hwaccel)
    cmd += OUTPUT_ARGS
    cmd.append(config.output_url)
    return cmd
