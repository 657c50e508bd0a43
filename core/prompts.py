"""Instruction text for each sculpture stage.

The anchor stage (4) is generated first, either from the user's text or from
an image they supplied. Stages 1-3 are then derived from the anchor image by
asking the model to "undo" progressively more of the sculptor's work.
"""

from core.state import ANCHOR_RANK, DEPENDENT_RANKS

_FINISHED_QUALITY = (
    "Intricate textures, lifelike details, perfect proportions. "
    "The clay looks wet and malleable. Dramatic studio lighting. "
    "Photorealistic studio photography."
)

_FROM_USER_IMAGE = (
    "Create a finished, highly detailed masterpiece wet grey clay sculpture "
    "based on this reference image. Interpret the subject in the image as a "
    "sculpture. " + _FINISHED_QUALITY
)

_FROM_SCRATCH = (
    "A finished, highly detailed masterpiece wet grey clay sculpture {subject}. "
    + _FINISHED_QUALITY
)

# Detail increases strictly with rank.
_DEPENDENT_STAGES = {
    1: (
        "Transform this reference image of a sculpture into the very first stage "
        "of its creation: A single, smooth, amorphous lump of wet grey clay. It "
        "should capture the approximate volume and silhouette of the subject but "
        "must have ABSOLUTELY NO INTERNAL DETAIL. No face, no limbs defined, no "
        "texture. It should look like a smooth potato-shaped mass or a river stone "
        "in the vague shape of the subject. Keep the exact same camera angle and "
        "lighting as the reference."
    ),
    2: (
        "Transform this reference image of a sculpture into the blocking stage: "
        "The subject is constructed from distinct, crude geometric masses of clay "
        "(spheres, cylinders, blocks) pressed together. It shows the correct "
        "configuration, pose, and orientation of the final product, but the forms "
        "are simple and facetted. NO fine details, NO eyes, NO hair texture. It "
        "looks like a low-resolution structural study. Keep the exact same camera "
        "angle and lighting as the reference."
    ),
    3: (
        "Transform this reference image of a sculpture into a work-in-progress "
        "stage: The geometric blocks have been smoothed together and the primary "
        "anatomy is defined. Details are just beginning to emerge, eyes and "
        "features are faintly marked or sketched. The surface is rough, covered "
        "in rake marks, thumb prints, and clay pellets. It looks like an "
        "expressive, unfinished bozzetto. Keep the exact same camera angle and "
        "lighting as the reference."
    ),
}


def describe_subject(user_text):
    """Phrase the subject for the from-scratch and fallback instructions."""
    text = (user_text or "").strip()
    return f"of {text}" if text else "based on the provided image"


def build_prompt(user_text, rank, has_reference, is_initial_from_user_image):
    """Return the generation instruction for one stage.

    Deterministic: the same arguments always give the same string.
    """
    if rank != ANCHOR_RANK and rank not in DEPENDENT_RANKS:
        raise ValueError(f"Unknown stage rank: {rank}")

    subject = describe_subject(user_text)
    fallback = f"A clay sculpture {subject}"

    if has_reference:
        if rank == ANCHOR_RANK:
            # A reference on the anchor only comes from the user.
            return _FROM_USER_IMAGE if is_initial_from_user_image else fallback
        return _DEPENDENT_STAGES[rank]

    if rank == ANCHOR_RANK:
        if is_initial_from_user_image:
            return _FROM_USER_IMAGE
        return _FROM_SCRATCH.format(subject=subject)

    return fallback
